"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

import typer

from pulsectl.api import Session
from pulsectl.core.config import LoadedConfig, load_config
from pulsectl.core.errors import AdapterUnavailableError, ConnectionFailureError, PulsectlError
from pulsectl.core.model import DecodedReading, PeripheralRecord

app = typer.Typer(help="Bluetooth LE heart-rate monitor sessions")

_POLL_S = 0.2


def _build_session(ctx: typer.Context) -> Session:
    loaded: LoadedConfig = ctx.obj
    return Session(config=loaded.config)


def _matches(peripheral: PeripheralRecord, hint: str) -> bool:
    hint = hint.lower()
    identity = peripheral.identity.lower()
    return identity == hint or hint in identity or hint in (peripheral.name or "").lower()


def _format_reading(reading: DecodedReading) -> str:
    if reading.is_valid:
        return f"{reading.value} bpm"
    return f"invalid ({reading.error})" if reading.error else "invalid"


def _require_adapter(session: Session) -> None:
    if not session.initialized:
        raise AdapterUnavailableError(
            f"Bluetooth adapter is not ready (state: {session.adapter_state.value})"
        )


async def _read_state(session: Session) -> tuple[str, bool]:
    async with session:
        return session.adapter_state.value, session.initialized


async def _scan(session: Session, seconds: float) -> list[PeripheralRecord]:
    async with session:
        _require_adapter(session)
        await session.scan_for_peripherals()
        await asyncio.sleep(min(seconds, session.config.scan_timeout_s))
        return session.devices


async def _wait_for_device(session: Session, hint: str, seconds: float) -> PeripheralRecord | None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while loop.time() < deadline:
        for peripheral in session.devices:
            if _matches(peripheral, hint):
                return peripheral
        if not session.scanner.active:
            break
        await asyncio.sleep(_POLL_S)
    return None


async def _monitor(
    session: Session,
    hint: str,
    count: int | None,
    scan_seconds: float,
    emit: Callable[[DecodedReading], None],
) -> int:
    async with session:
        _require_adapter(session)
        await session.scan_for_peripherals()
        target = await _wait_for_device(session, hint, scan_seconds)
        if target is None:
            raise ConnectionFailureError(f"No device found matching '{hint}'")

        readings: asyncio.Queue[DecodedReading] = asyncio.Queue()

        def _on_change(field: str) -> None:
            if field == "reading":
                readings.put_nowait(session.reading)

        remove = session.add_listener(_on_change)
        try:
            await session.connect_to_device(target)
            if session.connection is None:
                raise ConnectionFailureError(f"Could not connect to {target.identity}")

            received = 0
            while count is None or received < count:
                try:
                    reading = await asyncio.wait_for(readings.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    if session.connection is None:
                        raise ConnectionFailureError(f"Connection to {target.identity} lost") from None
                    continue
                if session.connection is None:
                    raise ConnectionFailureError(f"Connection to {target.identity} lost")
                emit(reading)
                received += 1
            return received
        finally:
            remove()
            await session.disconnect_from_device()


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to a YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Scan for, connect to, and stream from BLE heart-rate sensors."""
    try:
        loaded = load_config(config)
    except PulsectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else loaded.config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = loaded


@app.command("state")
def show_state(ctx: typer.Context) -> None:
    """Show the Bluetooth adapter state."""
    try:
        state, initialized = asyncio.run(_read_state(_build_session(ctx)))
    except PulsectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Adapter: {state}")
    typer.echo(f"Ready: {'yes' if initialized else 'no'}")


@app.command("scan")
def scan(
    ctx: typer.Context,
    seconds: float = typer.Option(10.0, "--seconds", min=0.1, help="How long to scan"),
) -> None:
    """List advertising BLE peripherals."""
    try:
        devices = asyncio.run(_scan(_build_session(ctx), seconds))
    except PulsectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if not devices:
        typer.echo("No Bluetooth devices found")
        return
    for device in devices:
        typer.echo(f"{device.identity} {device.name or '<unnamed>'} rssi={device.rssi}")


@app.command("monitor")
def monitor(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Address or partial name"),
    count: int | None = typer.Option(None, "--count", min=1, help="Stop after N readings"),
    scan_seconds: float = typer.Option(15.0, "--scan-seconds", min=0.1, help="How long to look for DEVICE"),
) -> None:
    """Connect to DEVICE and print its heart rate."""

    def _emit(reading: DecodedReading) -> None:
        typer.echo(_format_reading(reading))

    try:
        asyncio.run(_monitor(_build_session(ctx), device, count, scan_seconds, _emit))
    except KeyboardInterrupt:
        typer.echo("Stopped", err=True)
    except PulsectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
