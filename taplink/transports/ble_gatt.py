"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from taplink.core.device_match import device_matches
from taplink.core.errors import (
    DeviceNotFoundError,
    ProtocolError,
    TransportConnectError,
    TransportReadError,
    TransportSendError,
    TransportTimeoutError,
)
from taplink.core.model import DeviceRef, Profile

LOGGER = logging.getLogger(__name__)

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"


def _import_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class BleakConnection:
    def __init__(
        self,
        client: Any,
        *,
        write_with_response: bool = True,
        timeout_s: float = 10.0,
    ) -> None:
        self._client = client
        self._write_with_response = write_with_response
        self._timeout_s = timeout_s
        self._disconnect_callbacks: list[Callable[[], None]] = []

    @property
    def is_connected(self) -> bool:
        return bool(self._client.is_connected)

    def handle_disconnect(self, _client: Any = None) -> None:
        for callback in list(self._disconnect_callbacks):
            callback()

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        self._disconnect_callbacks.append(callback)

    async def open(self) -> None:
        try:
            await self._client.connect()
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"BLE connect timed out for {self._client.address}") from exc
        except Exception as exc:
            raise TransportConnectError(f"BLE connect failed for {self._client.address}: {exc}") from exc
        if not self._client.is_connected:
            raise TransportConnectError(f"BLE connect failed for {self._client.address}")

    async def discover_service(self, service_uuid: str) -> Any:
        service = self._client.services.get_service(service_uuid)
        if service is None:
            raise TransportConnectError(f"Service {service_uuid} not found on {self._client.address}")
        return service

    async def resolve_characteristic(self, service: Any, characteristic_uuid: str) -> Any:
        characteristic = service.get_characteristic(characteristic_uuid)
        if characteristic is None:
            raise TransportConnectError(
                f"Characteristic {characteristic_uuid} not found in service {service.uuid}"
            )
        return characteristic

    async def subscribe(self, characteristic: Any, on_value: Callable[[bytes], None]) -> None:
        def _notify_handler(_: Any, data: bytearray) -> None:
            on_value(bytes(data))

        try:
            await self._client.start_notify(characteristic, _notify_handler)
        except Exception as exc:
            raise TransportConnectError(f"Starting notifications failed: {exc}") from exc

    async def unsubscribe(self, characteristic: Any) -> None:
        try:
            await self._client.stop_notify(characteristic)
        except Exception as exc:
            raise TransportConnectError(f"Stopping notifications failed: {exc}") from exc

    async def write(self, characteristic: Any, data: bytes) -> None:
        try:
            await asyncio.wait_for(
                self._client.write_gatt_char(
                    characteristic,
                    data,
                    response=self._write_with_response,
                ),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"BLE write timed out after {self._timeout_s}s") from exc
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc

    async def read(self, characteristic: Any) -> bytes:
        try:
            data = await asyncio.wait_for(
                self._client.read_gatt_char(characteristic),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"BLE read timed out after {self._timeout_s}s") from exc
        except Exception as exc:
            raise TransportReadError(f"BLE GATT read failed: {exc}") from exc
        return bytes(data)

    async def disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except Exception as exc:
            raise TransportConnectError(f"BLE disconnect failed: {exc}") from exc


class BleakTransport:
    def __init__(self, *, write_with_response: bool = True, timeout_s: float = 10.0) -> None:
        self.write_with_response = write_with_response
        self.timeout_s = timeout_s

    async def scan(self, profile: Profile) -> DeviceRef:
        bleak = _import_bleak()

        def _filter(device: Any, advertisement: Any) -> bool:
            name = device.name or getattr(advertisement, "local_name", None) or ""
            return device_matches(DeviceRef(address=device.address, name=name), profile)

        LOGGER.info("Requesting bluetooth device for profile '%s'...", profile.id)
        try:
            found = await bleak.BleakScanner.find_device_by_filter(_filter, timeout=self.timeout_s)
        except Exception as exc:
            raise TransportConnectError(f"BLE scan failed: {exc}") from exc
        if found is None:
            raise DeviceNotFoundError(
                f"No advertising device matched profile '{profile.id}' within {self.timeout_s}s"
            )
        LOGGER.info('"%s" bluetooth device selected', found.name)
        return DeviceRef(address=found.address, name=found.name or "", handle=found)

    async def list_devices(self, timeout_s: float | None = None) -> list[DeviceRef]:
        bleak = _import_bleak()
        try:
            found = await bleak.BleakScanner.discover(timeout=timeout_s or self.timeout_s)
        except Exception as exc:
            raise TransportConnectError(f"BLE scan failed: {exc}") from exc
        return [DeviceRef(address=d.address, name=d.name or "", handle=d) for d in found]

    async def connect(self, device: DeviceRef) -> BleakConnection:
        bleak = _import_bleak()
        connection: BleakConnection | None = None

        def _on_disconnect(client: Any) -> None:
            if connection is not None:
                connection.handle_disconnect(client)

        client = bleak.BleakClient(
            device.handle if device.handle is not None else device.address,
            disconnected_callback=_on_disconnect,
            timeout=self.timeout_s,
        )
        connection = BleakConnection(
            client,
            write_with_response=self.write_with_response,
            timeout_s=self.timeout_s,
        )
        await connection.open()
        return connection

    async def read_battery_level(self, profile: Profile) -> tuple[DeviceRef, int]:
        """Read the standard Battery Level characteristic of the profile's device, in percent."""
        device = await self.scan(profile)
        connection = await self.connect(device)
        try:
            service = await connection.discover_service(BATTERY_SERVICE_UUID)
            characteristic = await connection.resolve_characteristic(service, BATTERY_LEVEL_UUID)
            data = await connection.read(characteristic)
        finally:
            if connection.is_connected:
                await connection.disconnect()
        if not data:
            raise ProtocolError(f"Battery level of {device.address} came back empty")
        LOGGER.info('"%s" battery level is %d%%', device.name, data[0])
        return device, data[0]
