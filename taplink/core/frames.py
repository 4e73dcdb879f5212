"""Fixed 11-byte control frame codec.

Layout::

    offset  0     command      u8
    offset  1-4   payload      u32, big-endian
    offset  5-8   reserved     zero on encode
    offset  9     marker       253 from device, 254 to device
    offset 10     terminator   always 10
"""

from __future__ import annotations

import enum
import struct

from taplink.core.errors import ValidationError
from taplink.core.model import ControlFrame

FRAME_LENGTH = 11
TERMINATOR = 10
_MIN_DECODE_LENGTH = 10
_MAX_PAYLOAD = 0xFFFFFFFF
_FRAME_STRUCT = struct.Struct(">BI4xBB")


class Marker(enum.IntEnum):
    FROM_DEVICE = 253
    TO_DEVICE = 254


class Command(enum.IntEnum):
    DEVICE_HANDSHAKE = 21
    RFID_SCANNED = 31
    POUR_STOPPED_32 = 32
    POUR_STOPPED_33 = 33
    POUR_STOPPED_34 = 34
    POUR_STOPPED_35 = 35
    POUR_CONTINUE = 36
    TAP_SIDE = 41
    TAP_VOLUME = 42
    PRICE = 43
    USER_BALANCE = 44
    TAP_CLOSED = 45
    POUR_FINISHED = 51


def encode_frame(command: int, payload: int) -> bytes:
    if not 0 <= command <= 0xFF:
        raise ValidationError(f"Command {command} does not fit in one byte")
    if not 0 <= payload <= _MAX_PAYLOAD:
        raise ValidationError(f"Payload {payload} does not fit in 32 bits")
    return _FRAME_STRUCT.pack(command, payload, Marker.TO_DEVICE, TERMINATOR)


def decode_frame(data: bytes | bytearray) -> ControlFrame | None:
    """Decode a control frame, or return None if `data` is not one."""
    if len(data) < _MIN_DECODE_LENGTH:
        return None
    marker = data[9]
    if marker not in (Marker.FROM_DEVICE, Marker.TO_DEVICE):
        return None
    return ControlFrame(
        command=data[0],
        payload_bytes=bytes(data[1:9]),
        marker=marker,
        terminator=data[10] if len(data) > 10 else None,
    )


def looks_like_control_frame(data: bytes | bytearray) -> bool:
    return (
        len(data) == FRAME_LENGTH
        and data[9] in (Marker.FROM_DEVICE, Marker.TO_DEVICE)
        and data[10] == TERMINATOR
    )


def command_name(command: int) -> str:
    try:
        return Command(command).name
    except ValueError:
        return f"UNKNOWN({command})"
