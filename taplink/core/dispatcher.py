"""Command dispatch for control frames coming from the tap controller."""

from __future__ import annotations

import logging
from collections.abc import Callable

from taplink.core.errors import ProtocolError
from taplink.core.frames import Command, Marker, command_name, encode_frame
from taplink.core.model import ControlFrame, DeviceState, DispenserSettings

LOGGER = logging.getLogger(__name__)

_POUR_STOPPED = frozenset(
    {
        Command.POUR_STOPPED_32,
        Command.POUR_STOPPED_33,
        Command.POUR_STOPPED_34,
        Command.POUR_STOPPED_35,
    }
)


class CommandDispatcher:
    """Interpret decoded control frames and decide which reply, if any, to send.

    The dispatcher never writes to the link itself: `handle()` returns the
    encoded reply frame and the session owns the write. `accept_device` and
    `validate_rfid` are optional strategies; without them device ids are
    checked against `settings.accepted_device_ids` (empty accepts every
    device) and every RFID is considered valid.
    """

    def __init__(
        self,
        settings: DispenserSettings | None = None,
        *,
        state: DeviceState | None = None,
        accept_device: Callable[[DeviceState], bool] | None = None,
        validate_rfid: Callable[[int], bool] | None = None,
    ) -> None:
        self.settings = settings or DispenserSettings()
        self.state = state if state is not None else DeviceState()
        self.accept_device = accept_device
        self.validate_rfid = validate_rfid

    def reset(self) -> None:
        self.state.reset()

    def handle(self, frame: ControlFrame) -> bytes | None:
        if frame.marker != Marker.FROM_DEVICE:
            LOGGER.debug(
                "Ignoring frame %s with marker %s", command_name(frame.command), frame.marker
            )
            return None

        command = frame.command
        if command == Command.DEVICE_HANDSHAKE:
            self.state.device_id = frame.payload
            self.state.device_uid = frame.long_id
            LOGGER.info("Device handshake, long device id %s", frame.long_id)
            accepted = self._device_accepted()
            LOGGER.info("Device %s %s", self.state.device_id, "accepted" if accepted else "rejected")
            return encode_frame(command, 1 if accepted else 0)

        if command == Command.RFID_SCANNED:
            self.state.rfid_number = frame.payload
            LOGGER.info("RFID number %s", frame.payload)
            if self.validate_rfid is not None and not self.validate_rfid(frame.payload):
                LOGGER.warning("RFID number %s rejected", frame.payload)
                return encode_frame(command, 0)
            return None

        if command == Command.TAP_SIDE:
            return encode_frame(command, self.settings.tap_side)
        if command == Command.TAP_VOLUME:
            return encode_frame(command, self.settings.volume_ml)
        if command == Command.PRICE:
            return encode_frame(command, self.settings.price_cents)
        if command == Command.USER_BALANCE:
            return encode_frame(command, self.settings.balance_cents)

        if command in _POUR_STOPPED:
            LOGGER.info("Finish pouring due to %s", command)
            return None
        if command == Command.POUR_CONTINUE:
            LOGGER.info("Pouring continues, amount %s", frame.payload)
            return None
        if command == Command.POUR_FINISHED:
            LOGGER.info("Finish pouring, amount %s", frame.payload)
            return None

        raise ProtocolError(f"Unrecognized command {command} (payload {frame.payload})")

    def start_pour_frame(self) -> bytes:
        return encode_frame(Command.RFID_SCANNED, 1)

    def close_tap_frame(self) -> bytes:
        return encode_frame(Command.TAP_CLOSED, 1)

    def _device_accepted(self) -> bool:
        if self.accept_device is not None:
            return self.accept_device(self.state)
        accepted = self.settings.accepted_device_ids
        return not accepted or self.state.device_id in accepted
