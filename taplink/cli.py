"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable

import typer

from taplink.api import Terminal
from taplink.core.device_match import profiles_for_device
from taplink.core.errors import TaplinkError
from taplink.core.profile_loader import LoadedProfiles, get_profile, load_profiles
from taplink.transports.ble_gatt import BleakTransport

app = typer.Typer(help="Text terminal and tap control over a BLE characteristic")

_PROFILE_OPTION = typer.Option(None, "--profile", help="Profile ID (default: nus_tap)")


def _load() -> LoadedProfiles:
    loaded = load_profiles()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded


def _build_terminal(profile_id: str | None, *, verbose: bool = False) -> Terminal:
    terminal = Terminal(get_profile(profile_id, _load()))
    if verbose:
        terminal.on_log = lambda line: typer.echo(line, err=True)
    return terminal


async def _with_connection(terminal: Terminal, action: Callable[[], Awaitable[None]]) -> None:
    await terminal.connect()
    try:
        await action()
    finally:
        await terminal.disconnect()


@app.command("profiles")
def list_profiles() -> None:
    """List available device profiles."""
    try:
        loaded = _load()
        if not loaded.profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in sorted(loaded.profiles.values(), key=lambda p: p.id):
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  service: {profile.link.service_uuid}")
            typer.echo(f"  characteristic: {profile.link.characteristic_uuid}")
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(
    timeout: float = typer.Option(5.0, "--timeout", help="Scan duration in seconds"),
) -> None:
    """Scan for advertising BLE devices and show the profiles matching them."""
    try:
        loaded = _load()
        devices = asyncio.run(BleakTransport().list_devices(timeout))
        if not devices:
            typer.echo("No Bluetooth devices found")
            return

        for device in devices:
            matched = ", ".join(profiles_for_device(device, loaded.profiles)) or "<no-match>"
            typer.echo(f"{device.address} {device.name or '<unknown-device>'} -> {matched}")
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send_text(
    text: str,
    profile: str | None = _PROFILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print link log to stderr"),
) -> None:
    """Connect, send one text message, and disconnect."""
    try:
        terminal = _build_terminal(profile, verbose=verbose)
        asyncio.run(_with_connection(terminal, lambda: terminal.send(text)))
        typer.echo(f"Sent {text!r} to {terminal.profile.id}")
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("pour")
def start_pour(
    profile: str | None = _PROFILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print link log to stderr"),
) -> None:
    """Tell the tap controller to start pouring."""
    try:
        terminal = _build_terminal(profile, verbose=verbose)
        asyncio.run(_with_connection(terminal, terminal.start_pour))
        typer.echo("Start pouring")
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("close-tap")
def close_tap(
    profile: str | None = _PROFILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print link log to stderr"),
) -> None:
    """Tell the tap controller to close the tap."""
    try:
        terminal = _build_terminal(profile, verbose=verbose)
        asyncio.run(_with_connection(terminal, terminal.close_tap))
        typer.echo("Tap stopped")
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("battery")
def read_battery(profile: str | None = _PROFILE_OPTION) -> None:
    """Read the battery level of the profile's device."""
    try:
        selected = get_profile(profile, _load())
        transport = BleakTransport(
            write_with_response=selected.link.write_with_response,
            timeout_s=selected.link.timeout_s,
        )
        device, level = asyncio.run(transport.read_battery_level(selected))
        typer.echo(f"{device.name or device.address}: battery {level}%")
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _interactive(terminal: Terminal) -> None:
    terminal.on_receive = lambda message: typer.echo(f"< {message}")
    await terminal.connect()
    typer.echo(f"Connected to {terminal.get_device_name() or 'Terminal'}")
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.rstrip("\r\n")
            if line == "/quit":
                break
            try:
                if line == "/pour":
                    await terminal.start_pour()
                    typer.echo("> Start pouring")
                elif line == "/close":
                    await terminal.close_tap()
                    typer.echo("> Tap stopped")
                else:
                    await terminal.send(line)
                    typer.echo(f"> {line}")
            except TaplinkError as exc:
                typer.echo(f"Error: {exc}", err=True)
    finally:
        await terminal.disconnect()


@app.command("terminal")
def run_terminal(
    profile: str | None = _PROFILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print link log to stderr"),
) -> None:
    """Interactive terminal: lines from stdin are sent, received messages are printed.

    `/pour` starts pouring, `/close` closes the tap, `/quit` (or EOF) disconnects.
    """
    try:
        terminal = _build_terminal(profile, verbose=verbose)
        asyncio.run(_interactive(terminal))
    except TaplinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
