"""Outbound chunk splitting and inbound message reassembly."""

from __future__ import annotations

import codecs

from taplink.core.errors import ValidationError


def split_message(message: str, max_length: int, separator: str) -> list[str]:
    """Append `separator` and cut into chunks of at most `max_length` UTF-8 bytes.

    Cuts only fall between characters. A character whose encoding is wider
    than `max_length` goes out alone in its own chunk.
    """
    if max_length <= 0:
        raise ValidationError(f"Chunk length must be positive, got {max_length}")

    chunks: list[str] = []
    current: list[str] = []
    current_size = 0
    for char in message + separator:
        width = len(char.encode("utf-8"))
        if current and current_size + width > max_length:
            chunks.append("".join(current))
            current = []
            current_size = 0
        current.append(char)
        current_size += width
    if current:
        chunks.append("".join(current))
    return chunks


class ReassemblyBuffer:
    """Collects notified text and yields one message per separator.

    Empty messages are dropped, so reassembling `split_message("", ...)`
    yields nothing; every non-empty message comes back unchanged.
    """

    def __init__(self, separator: str = "\n") -> None:
        self.separator = separator
        self._buffer: list[str] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        return "".join(self._buffer)

    def feed(self, chunk: str) -> list[str]:
        messages: list[str] = []
        for char in chunk:
            if char == self.separator:
                message = "".join(self._buffer)
                self._buffer.clear()
                if message:
                    messages.append(message)
            else:
                self._buffer.append(char)
        return messages

    def feed_bytes(self, data: bytes | bytearray) -> list[str]:
        # A multi-byte character may straddle two notifications.
        return self.feed(self._decoder.decode(bytes(data)))

    def clear(self) -> None:
        self._buffer.clear()
        self._decoder.reset()
