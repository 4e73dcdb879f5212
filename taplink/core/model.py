"""Core data models used across loader, session, dispatcher, and CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class MatchRules:
    name_contains: tuple[str, ...]
    address_prefix: tuple[str, ...]


@dataclass(frozen=True)
class LinkSpec:
    service_uuid: str
    characteristic_uuid: str
    max_chunk_length: int = 20
    write_with_response: bool = True
    timeout_s: float = 10.0


@dataclass(frozen=True)
class DispenserSettings:
    tap_side: int = 1
    volume_ml: int = 2000
    price_cents: int = 100
    balance_cents: int = 1000
    accepted_device_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    match: MatchRules
    link: LinkSpec
    receive_separator: str = "\n"
    send_separator: str = "\n"
    dispenser: DispenserSettings = field(default_factory=DispenserSettings)


@dataclass(frozen=True)
class DeviceRef:
    """A device picked by the transport's chooser.

    `handle` is whatever the transport needs to reconnect (a bleak
    ``BLEDevice`` for the BLE transport) and takes no part in equality.
    """

    address: str
    name: str
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ControlFrame:
    command: int
    payload_bytes: bytes
    marker: int
    terminator: int | None = None

    @property
    def payload(self) -> int:
        return int.from_bytes(self.payload_bytes[:4], "big")

    @property
    def long_id(self) -> str:
        return self.payload_bytes.hex()


@dataclass
class DeviceState:
    device_id: int | None = None
    device_uid: str | None = None
    rfid_number: int | None = None

    def reset(self) -> None:
        self.device_id = None
        self.device_uid = None
        self.rfid_number = None


class SessionState(enum.Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
