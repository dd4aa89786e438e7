"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import dataclasses
import logging

import typer

from blesession.core.device_match import resolve_peripheral
from blesession.core.errors import BlesessionError
from blesession.core.model import ScanPhase, SessionEvent, SessionEventKind, SessionState
from blesession.core.profile_loader import load_profiles
from blesession.core.session import SessionManager
from blesession.gateways.bleak_gateway import BleakGateway

app = typer.Typer(help="Scan, connect to, and talk with BLE peripherals")

_SCAN_GRACE_S = 5.0


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def _build_session(profile_id: str | None, timeout: float | None = None) -> SessionManager:
    loaded = load_profiles()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    profile = loaded.get(profile_id)
    if timeout is not None:
        profile = dataclasses.replace(profile, scan=dataclasses.replace(profile.scan, timeout_s=timeout))
    return SessionManager(BleakGateway(), profile)


def _echo_event(event: SessionEvent) -> None:
    if event.kind is SessionEventKind.CHARACTERISTIC_UPDATE and event.update is not None:
        typer.echo(f"{event.update.characteristic_uuid}: {event.update.value.hex()}")
    elif event.kind is SessionEventKind.ERROR:
        typer.echo(f"Warning: {event.error}", err=True)


async def _scan_once(session: SessionManager) -> SessionState:
    stopped = asyncio.Event()

    def _on_event(event: SessionEvent) -> None:
        if event.state.scan_phase is ScanPhase.STOPPED:
            stopped.set()

    unsubscribe = session.subscribe(_on_event)
    try:
        await session.start_scan()
        try:
            await asyncio.wait_for(stopped.wait(), timeout=session.profile.scan.timeout_s + _SCAN_GRACE_S)
        except asyncio.TimeoutError:
            await session.stop_scan()
    finally:
        unsubscribe()
    return session.snapshot()


async def _connect_to(session: SessionManager, device: str) -> SessionState:
    state = await _scan_once(session)
    record = resolve_peripheral(state.discovered, device)
    return await session.connect(record.id)


@app.command("profiles")
def list_profiles() -> None:
    """List available session profiles."""
    try:
        loaded = load_profiles()
        for warning in loaded.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        if not loaded.profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in sorted(loaded.profiles.values(), key=lambda p: p.id):
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  service: {profile.service_uuid}")
            if profile.notify_char_uuid:
                typer.echo(f"  notify: {profile.notify_char_uuid}")
            if profile.write_char_uuid:
                typer.echo(f"  write: {profile.write_char_uuid}")
    except BlesessionError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    timeout: float | None = typer.Option(None, "--timeout", min=0.1, help="Scan duration in seconds"),
) -> None:
    """Scan once and list discovered peripherals."""

    async def _run() -> SessionState:
        async with _build_session(profile, timeout) as session:
            return await _scan_once(session)

    try:
        state = asyncio.run(_run())
    except BlesessionError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if not state.discovered:
        typer.echo("No BLE peripherals found")
        return
    for record in state.discovered:
        rssi = f"{record.rssi} dBm" if record.rssi is not None else "n/a"
        typer.echo(f"{record.id} {record.display_name} rssi={rssi}")


@app.command("connect")
def connect(
    device: str,
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    listen: float = typer.Option(0.0, "--listen", min=0.0, help="Seconds to print notifications"),
) -> None:
    """Connect to DEVICE (address or partial name) and list its services."""

    async def _run() -> None:
        async with _build_session(profile) as session:
            session.subscribe(_echo_event)
            state = await _connect_to(session, device)
            typer.echo(f"Connected to {state.connection.device_id}")
            for service in state.services:
                typer.echo(f"service {service.uuid}")
                for char in state.characteristics:
                    if char.service_uuid == service.uuid:
                        props = ",".join(char.properties)
                        typer.echo(f"  characteristic {char.uuid} [{props}]")
            if listen > 0:
                await asyncio.sleep(listen)

    try:
        asyncio.run(_run())
    except BlesessionError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send(
    device: str,
    data: str,
    as_hex: bool = typer.Option(False, "--hex", help="Interpret DATA as hex bytes"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
) -> None:
    """Connect to DEVICE and write DATA to the profile's write characteristic."""
    try:
        payload = bytes.fromhex(data) if as_hex else data.encode("utf-8")
    except ValueError:
        typer.echo(f"Error: '{data}' is not valid hex", err=True)
        raise typer.Exit(code=1) from None

    async def _run() -> str | None:
        async with _build_session(profile) as session:
            session.subscribe(_echo_event)
            state = await _connect_to(session, device)
            await session.send_data(payload)
            return state.connection.device_id

    try:
        device_id = asyncio.run(_run())
    except BlesessionError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(f"Sent {payload.hex()} to {device_id}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
