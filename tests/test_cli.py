from __future__ import annotations

from typer.testing import CliRunner

from taplink import cli
from taplink.core.errors import DeviceNotFoundError, TransportConnectError, ValidationError
from taplink.core.model import DeviceRef, LinkSpec, MatchRules, Profile
from taplink.core.profile_loader import LoadedProfiles

PROFILE = Profile(
    id="nus_tap",
    name="NUS tap controller",
    match=MatchRules(name_contains=("TapCtl",), address_prefix=()),
    link=LinkSpec(
        service_uuid="6e400001-b5a3-f393-e0a9-e50e24dcca9e",
        characteristic_uuid="6e400002-b5a3-f393-e0a9-e50e24dcca9e",
    ),
)


def _fake_load_profiles() -> LoadedProfiles:
    return LoadedProfiles(profiles={"nus_tap": PROFILE}, warnings=())


class FakeTerminal:
    instances: list[FakeTerminal] = []

    def __init__(self, profile: Profile) -> None:
        self.profile = profile
        self.on_receive = None
        self.on_log = None
        self.sent: list[str] = []
        self.frames: list[str] = []
        self.connected = False
        FakeTerminal.instances.append(self)

    async def connect(self) -> None:
        self.connected = True
        if self.on_receive is not None:
            self.on_receive("hello from tap")

    async def disconnect(self) -> None:
        self.connected = False

    async def send(self, data: object) -> None:
        if not data:
            raise ValidationError("Data must be not empty")
        self.sent.append(str(data))

    async def start_pour(self) -> None:
        self.frames.append("pour")

    async def close_tap(self) -> None:
        self.frames.append("close")

    def get_device_name(self) -> str:
        return "TapCtl 1" if self.connected else ""


class FakeBleakTransport:
    def __init__(self, **options: object) -> None:
        self.options = options

    async def list_devices(self, timeout_s: float | None = None) -> list[DeviceRef]:
        return [
            DeviceRef(address="C0:98:E5:00:11:22", name="TapCtl 1"),
            DeviceRef(address="11:22:33:44:55:66", name=""),
        ]

    async def read_battery_level(self, profile: Profile) -> tuple[DeviceRef, int]:
        return DeviceRef(address="C0:98:E5:00:11:22", name="TapCtl 1"), 87


runner = CliRunner()


def _patch(monkeypatch) -> None:
    FakeTerminal.instances.clear()
    monkeypatch.setattr(cli, "load_profiles", _fake_load_profiles)
    monkeypatch.setattr(cli, "Terminal", FakeTerminal)
    monkeypatch.setattr(cli, "BleakTransport", FakeBleakTransport)


def test_profiles_command(monkeypatch):
    _patch(monkeypatch)
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "nus_tap: NUS tap controller" in result.stdout
    assert "characteristic: 6e400002-b5a3-f393-e0a9-e50e24dcca9e" in result.stdout


def test_devices_command(monkeypatch):
    _patch(monkeypatch)
    result = runner.invoke(cli.app, ["devices", "--timeout", "1"])
    assert result.exit_code == 0
    assert "C0:98:E5:00:11:22 TapCtl 1 -> nus_tap" in result.stdout
    assert "11:22:33:44:55:66 <unknown-device> -> <no-match>" in result.stdout


def test_send_command(monkeypatch):
    _patch(monkeypatch)
    result = runner.invoke(cli.app, ["send", "hello"])
    assert result.exit_code == 0
    assert "Sent 'hello' to nus_tap" in result.stdout
    terminal = FakeTerminal.instances[0]
    assert terminal.sent == ["hello"]
    assert not terminal.connected


def test_pour_and_close_tap_commands(monkeypatch):
    _patch(monkeypatch)
    assert runner.invoke(cli.app, ["pour"]).exit_code == 0
    assert runner.invoke(cli.app, ["close-tap"]).exit_code == 0
    assert [t.frames for t in FakeTerminal.instances] == [["pour"], ["close"]]


def test_terminal_command(monkeypatch):
    _patch(monkeypatch)
    result = runner.invoke(cli.app, ["terminal"], input="hi there\n/pour\n\n/close\n/quit\nignored\n")
    assert result.exit_code == 0
    assert "Connected to TapCtl 1" in result.stdout
    assert "< hello from tap" in result.stdout
    assert "> hi there" in result.stdout
    assert "> Start pouring" in result.stdout
    assert "> Tap stopped" in result.stdout
    assert "Error: Data must be not empty" in result.stderr
    terminal = FakeTerminal.instances[0]
    assert terminal.sent == ["hi there"]
    assert terminal.frames == ["pour", "close"]
    assert not terminal.connected


def test_unknown_profile_error_is_clean(monkeypatch):
    _patch(monkeypatch)
    result = runner.invoke(cli.app, ["send", "hello", "--profile", "missing"])
    assert result.exit_code == 1
    assert "Error: Unknown profile 'missing'" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_connect_error_is_clean(monkeypatch):
    class FailingTerminal(FakeTerminal):
        async def connect(self) -> None:
            raise DeviceNotFoundError("No advertising device matched profile 'nus_tap'")

    _patch(monkeypatch)
    monkeypatch.setattr(cli, "Terminal", FailingTerminal)
    result = runner.invoke(cli.app, ["pour"])
    assert result.exit_code == 1
    assert "Error: No advertising device matched profile 'nus_tap'" in result.stderr


def test_load_warning_is_printed(monkeypatch):
    _patch(monkeypatch)
    monkeypatch.setattr(
        cli,
        "load_profiles",
        lambda: LoadedProfiles(
            profiles={"nus_tap": PROFILE},
            warnings=("User profile 'nus_tap' overrides packaged profile",),
        ),
    )
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "Warning: User profile 'nus_tap' overrides packaged profile" in result.stderr


def test_battery_command(monkeypatch):
    _patch(monkeypatch)
    result = runner.invoke(cli.app, ["battery"])
    assert result.exit_code == 0
    assert "TapCtl 1: battery 87%" in result.stdout


def test_battery_error_is_clean(monkeypatch):
    class MissingBatteryTransport(FakeBleakTransport):
        async def read_battery_level(self, profile: Profile) -> tuple[DeviceRef, int]:
            raise TransportConnectError("Service 0000180f-0000-1000-8000-00805f9b34fb not found")

    _patch(monkeypatch)
    monkeypatch.setattr(cli, "BleakTransport", MissingBatteryTransport)
    result = runner.invoke(cli.app, ["battery"])
    assert result.exit_code == 1
    assert "Error: Service 0000180f" in result.stderr
