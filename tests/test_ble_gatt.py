from __future__ import annotations

import asyncio

import pytest

from taplink.core.errors import (
    ProtocolError,
    TransportConnectError,
    TransportReadError,
    TransportSendError,
    TransportTimeoutError,
)
from taplink.core.model import DeviceRef
from taplink.transports.ble_gatt import (
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    BleakConnection,
    BleakTransport,
)

SERVICE_UUID = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
CHARACTERISTIC_UUID = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"


class FakeCharacteristic:
    def __init__(self, uuid: str = CHARACTERISTIC_UUID) -> None:
        self.uuid = uuid


class FakeService:
    def __init__(self, uuid: str, characteristic_uuids: tuple[str, ...]) -> None:
        self.uuid = uuid
        self._characteristic_uuids = characteristic_uuids

    def get_characteristic(self, uuid: str) -> FakeCharacteristic | None:
        return FakeCharacteristic(uuid) if uuid in self._characteristic_uuids else None


class FakeServices:
    def __init__(self) -> None:
        self._services = {
            SERVICE_UUID: (CHARACTERISTIC_UUID,),
            BATTERY_SERVICE_UUID: (BATTERY_LEVEL_UUID,),
        }

    def get_service(self, uuid: str) -> FakeService | None:
        characteristic_uuids = self._services.get(uuid)
        return FakeService(uuid, characteristic_uuids) if characteristic_uuids is not None else None


class FakeBleakClient:
    address = "AA:BB:CC:DD:EE:FF"

    def __init__(self) -> None:
        self.is_connected = False
        self.services = FakeServices()
        self.notify_handler = None
        self.writes: list[tuple[bytes, bool]] = []
        self.write_error: Exception | None = None
        self.write_delay = 0.0
        self.values: dict[str, bytes] = {}
        self.read_error: Exception | None = None

    async def connect(self) -> None:
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False

    async def start_notify(self, characteristic, handler) -> None:
        self.notify_handler = handler

    async def stop_notify(self, characteristic) -> None:
        self.notify_handler = None

    async def write_gatt_char(self, characteristic, data: bytes, response: bool) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((bytes(data), response))

    async def read_gatt_char(self, characteristic) -> bytearray:
        if self.read_error is not None:
            raise self.read_error
        return bytearray(self.values.get(characteristic.uuid, b""))


def test_discovery_resolves_service_and_characteristic() -> None:
    async def scenario() -> None:
        connection = BleakConnection(FakeBleakClient())
        await connection.open()
        service = await connection.discover_service(SERVICE_UUID)
        characteristic = await connection.resolve_characteristic(service, CHARACTERISTIC_UUID)
        assert characteristic.uuid == CHARACTERISTIC_UUID

        with pytest.raises(TransportConnectError):
            await connection.discover_service("ffe0")
        with pytest.raises(TransportConnectError):
            await connection.resolve_characteristic(service, "ffe1")

    asyncio.run(scenario())


def test_notifications_are_delivered_as_bytes() -> None:
    async def scenario() -> None:
        client = FakeBleakClient()
        connection = BleakConnection(client)
        values: list[bytes] = []
        await connection.subscribe(FakeCharacteristic(), values.append)

        client.notify_handler(17, bytearray(b"hi\n"))

        assert values == [b"hi\n"]
        assert isinstance(values[0], bytes)

    asyncio.run(scenario())


def test_write_uses_configured_response_mode() -> None:
    async def scenario() -> None:
        client = FakeBleakClient()
        connection = BleakConnection(client, write_with_response=False)
        await connection.write(FakeCharacteristic(), b"AB\n")
        assert client.writes == [(b"AB\n", False)]

    asyncio.run(scenario())


def test_write_failure_is_wrapped() -> None:
    async def scenario() -> None:
        client = FakeBleakClient()
        client.write_error = OSError("gatt busy")
        connection = BleakConnection(client)
        with pytest.raises(TransportSendError):
            await connection.write(FakeCharacteristic(), b"AB\n")

    asyncio.run(scenario())


def test_write_timeout() -> None:
    async def scenario() -> None:
        client = FakeBleakClient()
        client.write_delay = 1.0
        connection = BleakConnection(client, timeout_s=0.01)
        with pytest.raises(TransportTimeoutError):
            await connection.write(FakeCharacteristic(), b"AB\n")

    asyncio.run(scenario())


def test_disconnect_callbacks_fire() -> None:
    connection = BleakConnection(FakeBleakClient())
    fired: list[str] = []
    connection.on_disconnect(lambda: fired.append("one"))
    connection.on_disconnect(lambda: fired.append("two"))

    connection.handle_disconnect()

    assert fired == ["one", "two"]


def test_read_failure_is_wrapped() -> None:
    async def scenario() -> None:
        client = FakeBleakClient()
        client.read_error = OSError("gatt busy")
        connection = BleakConnection(client)
        with pytest.raises(TransportReadError):
            await connection.read(FakeCharacteristic(BATTERY_LEVEL_UUID))

    asyncio.run(scenario())


def _battery_transport(client: FakeBleakClient, monkeypatch: pytest.MonkeyPatch) -> BleakTransport:
    transport = BleakTransport()

    async def fake_scan(profile) -> DeviceRef:
        return DeviceRef(address=client.address, name="Tap 1")

    async def fake_connect(device: DeviceRef) -> BleakConnection:
        connection = BleakConnection(client)
        await connection.open()
        return connection

    monkeypatch.setattr(transport, "scan", fake_scan)
    monkeypatch.setattr(transport, "connect", fake_connect)
    return transport


def test_battery_level_is_read_and_link_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeBleakClient()
    client.values[BATTERY_LEVEL_UUID] = b"\x57"
    transport = _battery_transport(client, monkeypatch)

    device, level = asyncio.run(transport.read_battery_level(object()))

    assert (device.name, level) == ("Tap 1", 87)
    assert not client.is_connected


def test_empty_battery_level_is_a_protocol_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeBleakClient()
    transport = _battery_transport(client, monkeypatch)

    with pytest.raises(ProtocolError):
        asyncio.run(transport.read_battery_level(object()))
    assert not client.is_connected
