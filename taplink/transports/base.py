"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from taplink.core.model import DeviceRef, Profile


class Connection(Protocol):
    @property
    def is_connected(self) -> bool: ...

    async def discover_service(self, service_uuid: str) -> Any:
        """Return a handle for the primary service `service_uuid`."""

    async def resolve_characteristic(self, service: Any, characteristic_uuid: str) -> Any:
        """Return a handle for `characteristic_uuid` within `service`."""

    async def subscribe(self, characteristic: Any, on_value: Callable[[bytes], None]) -> None:
        """Start value-change notifications, delivering each value to `on_value`."""

    async def unsubscribe(self, characteristic: Any) -> None:
        """Stop value-change notifications."""

    async def write(self, characteristic: Any, data: bytes) -> None:
        """Write one value to the characteristic."""

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        """Register a callback for unsolicited link loss."""

    async def disconnect(self) -> None:
        """Close the link."""


class Transport(Protocol):
    async def scan(self, profile: Profile) -> DeviceRef:
        """Pick one device matching `profile` (the device chooser)."""

    async def connect(self, device: DeviceRef) -> Connection:
        """Open a link to `device`."""
