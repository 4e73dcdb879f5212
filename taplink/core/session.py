"""Connection lifecycle, inbound routing, and sequential writes over one link."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from taplink.core.chunking import ReassemblyBuffer, split_message
from taplink.core.dispatcher import CommandDispatcher
from taplink.core.errors import (
    DisconnectedError,
    ProtocolError,
    SessionBusyError,
    TaplinkError,
    TransportError,
    ValidationError,
)
from taplink.core.frames import command_name, decode_frame, looks_like_control_frame
from taplink.core.model import DeviceRef, Profile, SessionState
from taplink.transports.base import Connection, Transport

LOGGER = logging.getLogger(__name__)

_IN_PROGRESS = frozenset(
    {SessionState.DISCOVERING, SessionState.CONNECTING, SessionState.SUBSCRIBING}
)


class ConnectionSession:
    """Owns the single live connection to a tap controller.

    Every connect or reconnect attempt gets a number; `disconnect()` and new
    attempts bump it, and an attempt that finds its number stale after an
    await gives up with `DisconnectedError`. Transport callbacks are bound
    to the connection they were registered on and ignored once that
    connection is no longer current.
    """

    def __init__(
        self,
        transport: Transport,
        profile: Profile,
        *,
        dispatcher: CommandDispatcher | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self.transport = transport
        self.profile = profile
        self.service_uuid = profile.link.service_uuid
        self.characteristic_uuid = profile.link.characteristic_uuid
        self.max_chunk_length = profile.link.max_chunk_length
        self.send_separator = profile.send_separator
        self.buffer = ReassemblyBuffer(profile.receive_separator)
        self.dispatcher = dispatcher or CommandDispatcher(profile.dispenser)
        self.on_message = on_message
        self.state = SessionState.IDLE

        self._device: DeviceRef | None = None
        self._connection: Connection | None = None
        self._characteristic: Any = None
        self._attempt = 0
        self._link_lost = False
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.ACTIVE and self._characteristic is not None

    @property
    def device(self) -> DeviceRef | None:
        return self._device

    @property
    def device_name(self) -> str:
        return self._device.name if self._device is not None else ""

    async def connect(self) -> None:
        if self.is_connected:
            LOGGER.info('Already connected to "%s"', self.device_name)
            return
        if self.state in _IN_PROGRESS:
            raise SessionBusyError("A connect attempt is already in progress")

        self._attempt += 1
        attempt = self._attempt
        try:
            if self._device is None:
                self.state = SessionState.DISCOVERING
                device = await self.transport.scan(self.profile)
                self._guard(attempt)
                self._device = device
            await self._open(self._device, attempt)
        except Exception as exc:
            LOGGER.error("Connect failed: %s", exc)
            if attempt == self._attempt:
                self.state = SessionState.IDLE
                self._device = None
                await self._abandon()
            raise

    async def disconnect(self) -> None:
        self._attempt += 1
        connection = self._connection
        characteristic = self._characteristic
        name = self.device_name
        self._connection = None
        self._characteristic = None
        self._device = None
        self.buffer.clear()
        self.dispatcher.reset()
        self.state = SessionState.DISCONNECTED

        if connection is None:
            return

        LOGGER.info('Disconnecting from "%s" bluetooth device...', name)
        if not connection.is_connected:
            LOGGER.info('"%s" bluetooth device is already disconnected', name)
            return
        if characteristic is not None:
            try:
                await connection.unsubscribe(characteristic)
                LOGGER.info("Notifications stopped")
            except TaplinkError as exc:
                LOGGER.warning("Stopping notifications failed: %s", exc)
        try:
            await connection.disconnect()
        except TaplinkError as exc:
            LOGGER.error('Disconnecting "%s" failed: %s', name, exc)
            raise
        LOGGER.info('"%s" bluetooth device disconnected', name)

    async def send(self, data: object) -> None:
        text = "" if data is None else str(data)
        if not text:
            raise ValidationError("Data must be not empty")

        chunks = split_message(text, self.max_chunk_length, self.send_separator)
        connection, characteristic = self._require_link("There is no connected device")
        async with self._write_lock:
            for chunk in chunks:
                # The whole message goes out on the link it started on.
                if self._connection is not connection or self._characteristic is not characteristic:
                    LOGGER.warning("Link changed while sending, dropping the rest of the message")
                    raise DisconnectedError("Device has been disconnected")
                await self._write(connection, characteristic, chunk.encode("utf-8"))

    async def write_frame(self, frame: bytes) -> None:
        async with self._write_lock:
            connection, characteristic = self._require_link("There is no connected device")
            LOGGER.info("Send data to device for command %s", command_name(frame[0]))
            await self._write(connection, characteristic, frame)

    async def wait_idle(self) -> None:
        """Wait for background replies and reconnect attempts to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _open(self, device: DeviceRef, attempt: int) -> None:
        self.state = SessionState.CONNECTING
        self._link_lost = False
        self.buffer.clear()
        LOGGER.info("Connecting to GATT server...")
        connection = await self.transport.connect(device)
        if attempt != self._attempt:
            await _close_quietly(connection)
            raise DisconnectedError("Device has been disconnected")

        self._connection = connection
        connection.on_disconnect(lambda: self._handle_disconnection(connection))
        LOGGER.info("GATT server connected, getting service...")

        service = await connection.discover_service(self.service_uuid)
        self._guard(attempt)
        LOGGER.info("Service found, getting characteristic...")
        characteristic = await connection.resolve_characteristic(service, self.characteristic_uuid)
        self._guard(attempt)
        LOGGER.info("Characteristic found")

        self.state = SessionState.SUBSCRIBING
        LOGGER.info("Starting notifications...")
        await connection.subscribe(characteristic, lambda data: self._handle_value(connection, data))
        self._guard(attempt)

        self._characteristic = characteristic
        self.state = SessionState.ACTIVE
        LOGGER.info("Notifications started")

    async def _reconnect(self, device: DeviceRef, attempt: int) -> None:
        try:
            await self._open(device, attempt)
        except Exception as exc:
            LOGGER.error('Reconnecting to "%s" failed: %s', device.name, exc)
            if attempt == self._attempt:
                self.state = SessionState.DISCONNECTED
                self._device = None
                await self._abandon()

    async def _abandon(self) -> None:
        connection = self._connection
        self._connection = None
        self._characteristic = None
        if connection is not None:
            await _close_quietly(connection)

    async def _write(self, connection: Connection, characteristic: Any, data: bytes) -> None:
        try:
            await connection.write(characteristic, data)
        except TransportError as exc:
            if connection is not self._connection or not connection.is_connected:
                LOGGER.warning("Write failed on a lost link: %s", exc)
                raise DisconnectedError("Device has been disconnected") from exc
            raise

    async def _send_reply(self, frame: bytes) -> None:
        try:
            await self.write_frame(frame)
        except TaplinkError as exc:
            LOGGER.error("Reply for command %s failed: %s", command_name(frame[0]), exc)

    def _guard(self, attempt: int) -> None:
        if attempt != self._attempt or self._link_lost:
            raise DisconnectedError("Device has been disconnected")

    def _require_link(self, message: str) -> tuple[Connection, Any]:
        if self._connection is None or self._characteristic is None:
            raise DisconnectedError(message)
        return self._connection, self._characteristic

    def _handle_disconnection(self, connection: Connection) -> None:
        if connection is not self._connection:
            LOGGER.debug("Ignoring disconnect event from a stale connection")
            return
        if self.state in _IN_PROGRESS:
            LOGGER.warning('"%s" bluetooth device disconnected while connecting', self.device_name)
            self._link_lost = True
            return
        if self.state is not SessionState.ACTIVE or self._device is None:
            return

        LOGGER.warning('"%s" bluetooth device disconnected, trying to reconnect...', self.device_name)
        self._connection = None
        self._characteristic = None
        self.buffer.clear()
        self.dispatcher.reset()
        self._attempt += 1
        self._spawn(self._reconnect(self._device, self._attempt))

    def _handle_value(self, connection: Connection, data: bytes) -> None:
        if connection is not self._connection:
            return
        if looks_like_control_frame(data):
            self._handle_frame(data)
            return
        for message in self.buffer.feed_bytes(data):
            self._deliver(message)

    def _handle_frame(self, data: bytes) -> None:
        frame = decode_frame(data)
        if frame is None:
            return
        LOGGER.debug("Control frame %s received: %s", command_name(frame.command), data.hex())
        try:
            reply = self.dispatcher.handle(frame)
        except ProtocolError as exc:
            LOGGER.warning("Ignoring control frame: %s", exc)
            return
        except Exception:
            LOGGER.exception("Control frame handling failed for %s", command_name(frame.command))
            return
        if reply is not None:
            self._spawn(self._send_reply(reply))

    def _deliver(self, message: str) -> None:
        if self.on_message is None:
            LOGGER.info("Received %r with no receive callback set", message)
            return
        try:
            self.on_message(message)
        except Exception:
            LOGGER.exception("Receive callback failed for %r", message)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


async def _close_quietly(connection: Connection) -> None:
    if not connection.is_connected:
        return
    try:
        await connection.disconnect()
    except TaplinkError as exc:
        LOGGER.warning("Closing abandoned connection failed: %s", exc)
