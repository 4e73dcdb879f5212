"""Public API of taplink.

Host applications (terminal UIs, kiosk software, scripts) should import from
here; `taplink.core` modules may change between releases.
"""

from __future__ import annotations

from collections.abc import Callable

from taplink.core import logsink
from taplink.core.chunking import ReassemblyBuffer, split_message
from taplink.core.dispatcher import CommandDispatcher
from taplink.core.errors import (
    DeviceNotFoundError,
    DisconnectedError,
    ProfileLoadError,
    ProfileValidationError,
    ProtocolError,
    SessionBusyError,
    TaplinkError,
    TransportConnectError,
    TransportError,
    TransportReadError,
    TransportSendError,
    TransportTimeoutError,
    ValidationError,
)
from taplink.core.frames import Command, Marker, decode_frame, encode_frame
from taplink.core.model import (
    ControlFrame,
    DeviceRef,
    DeviceState,
    DispenserSettings,
    LinkSpec,
    MatchRules,
    Profile,
    SessionState,
)
from taplink.core.profile_loader import get_profile, load_profiles
from taplink.core.session import ConnectionSession
from taplink.transports.base import Connection, Transport
from taplink.transports.ble_gatt import BleakTransport

__all__ = [
    "TaplinkError",
    "ValidationError",
    "DisconnectedError",
    "SessionBusyError",
    "ProtocolError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "DeviceNotFoundError",
    "TransportConnectError",
    "TransportReadError",
    "TransportSendError",
    "TransportTimeoutError",
    "Command",
    "Marker",
    "ControlFrame",
    "DeviceRef",
    "DeviceState",
    "DispenserSettings",
    "LinkSpec",
    "MatchRules",
    "Profile",
    "SessionState",
    "ReassemblyBuffer",
    "split_message",
    "encode_frame",
    "decode_frame",
    "load_profiles",
    "get_profile",
    "Connection",
    "Transport",
    "BleakTransport",
    "Terminal",
]


def _check_separator(separator: object) -> str:
    if not isinstance(separator, str):
        raise ValidationError("Separator type is not a string")
    if len(separator) != 1:
        raise ValidationError("Separator length must be equal to one character")
    return separator


def _uuid_text(uuid: int | str) -> str:
    if isinstance(uuid, int):
        return f"{uuid:04x}"
    return uuid.strip().lower()


class Terminal:
    """Public terminal for a tap controller reachable over one BLE characteristic.

    Text goes out with `send()` and comes back through `on_receive`, one call
    per reassembled message. Control frames from the controller are answered
    automatically from the profile's dispenser settings. Set `on_log` to
    render the terminal's log lines in a host UI.
    """

    def __init__(
        self,
        profile: Profile | None = None,
        *,
        transport: Transport | None = None,
        accept_device: Callable[[DeviceState], bool] | None = None,
        validate_rfid: Callable[[int], bool] | None = None,
    ) -> None:
        self.profile = profile or get_profile()
        if transport is None:
            transport = BleakTransport(
                write_with_response=self.profile.link.write_with_response,
                timeout_s=self.profile.link.timeout_s,
            )
        self.dispatcher = CommandDispatcher(
            self.profile.dispenser,
            accept_device=accept_device,
            validate_rfid=validate_rfid,
        )
        self._session = ConnectionSession(
            transport,
            self.profile,
            dispatcher=self.dispatcher,
            on_message=self.receive,
        )
        self.on_receive: Callable[[str], None] | None = None
        self._on_log: Callable[[str], None] | None = None
        self._log_handler: logsink.CallbackHandler | None = None

    @property
    def on_log(self) -> Callable[[str], None] | None:
        return self._on_log

    @on_log.setter
    def on_log(self, callback: Callable[[str], None] | None) -> None:
        if self._log_handler is not None:
            logsink.detach(self._log_handler)
            self._log_handler = None
        self._on_log = callback
        if callback is not None:
            self._log_handler = logsink.attach(callback)

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def device_state(self) -> DeviceState:
        return self.dispatcher.state

    def set_service_uuid(self, uuid: int | str) -> None:
        self._session.service_uuid = _uuid_text(uuid)

    def set_characteristic_uuid(self, uuid: int | str) -> None:
        self._session.characteristic_uuid = _uuid_text(uuid)

    def set_receive_separator(self, separator: str) -> None:
        self._session.buffer.separator = _check_separator(separator)

    def set_send_separator(self, separator: str) -> None:
        self._session.send_separator = _check_separator(separator)

    async def connect(self) -> None:
        await self._session.connect()

    async def disconnect(self) -> None:
        await self._session.disconnect()

    async def send(self, data: object) -> None:
        await self._session.send(data)

    def get_device_name(self) -> str:
        return self._session.device_name

    def receive(self, data: str) -> None:
        if self.on_receive is not None:
            self.on_receive(data)

    async def start_pour(self) -> None:
        await self._session.write_frame(self.dispatcher.start_pour_frame())

    async def close_tap(self) -> None:
        await self._session.write_frame(self.dispatcher.close_tap_frame())

    async def wait_idle(self) -> None:
        await self._session.wait_idle()
