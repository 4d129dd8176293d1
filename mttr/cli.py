"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import typer

from mttr.backends.ports import list_serial_ports
from mttr.backends.simulated import SimulatedBackend
from mttr.core.errors import MttrError
from mttr.core.fields import format_state
from mttr.core.model import DEFAULT_BAUD_RATE, DEFAULT_PROTOCOL, ID_MAX, ID_MIN, Found, Progress, ScanEvent
from mttr.core.model_loader import ModelRegistry
from mttr.core.scan import ScanListener
from mttr.core.service import DeviceService

app = typer.Typer(help="Scan, inspect and configure servos on a serial bus")

SIMULATE_HELP = "Bus fixture (YAML) driving the simulated backend"


class EchoNotifier:
    def __init__(self) -> None:
        self.failed = False

    def error(self, message: str) -> None:
        self.failed = True
        typer.echo(f"Error: {message}", err=True)

    def info(self, message: str) -> None:
        typer.echo(message)


def _build_service(
    fixture: Path, scan_listener: ScanListener | None = None
) -> tuple[DeviceService, EchoNotifier]:
    notifier = EchoNotifier()
    service = DeviceService(
        SimulatedBackend.from_fixture(fixture), notifier=notifier, scan_listener=scan_listener
    )
    for warning in service.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return service, notifier


async def _connect(service: DeviceService, port: str, protocol: str, baud: int, device_id: int) -> bool:
    outcome = await service.scan(port, protocol, baud, device_id, device_id)
    if outcome is None or not outcome.devices:
        return False
    await service.select_device(device_id)
    return True


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("ports")
def list_ports(
    simulate: Path | None = typer.Option(None, "--simulate", help=SIMULATE_HELP),
) -> None:
    """List serial ports that may host a servo bus."""
    try:
        if simulate is not None:
            service, _ = _build_service(simulate)
            ports = asyncio.run(service.list_ports())
        else:
            ports = list_serial_ports()
        if not ports:
            typer.echo("No serial ports found")
            return
        for port in ports:
            typer.echo(port)
    except MttrError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("models")
def list_models() -> None:
    """List known device models and their control tables."""
    try:
        registry = ModelRegistry.load()
        for warning in registry.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        models = registry.list_models()
        if not models:
            typer.echo("No models loaded")
            raise typer.Exit(code=1)
        for model in models:
            writable = sum(1 for f in model.fields if f.writable)
            typer.echo(f"{model.model_number}: {model.name} ({len(model.fields)} fields, {writable} writable)")
    except MttrError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    simulate: Path = typer.Option(..., "--simulate", help=SIMULATE_HELP),
    port: str = typer.Option(..., "--port", help="Serial port to scan"),
    protocol: str = typer.Option(DEFAULT_PROTOCOL, "--protocol", help="Protocol version (1.0 or 2.0)"),
    baud: int = typer.Option(DEFAULT_BAUD_RATE, "--baud", help="Baud rate"),
    id_start: int = typer.Option(ID_MIN, "--id-start", help="First ID to ping"),
    id_end: int = typer.Option(ID_MAX, "--id-end", help="Last ID to ping"),
) -> None:
    """Ping an ID range and list the servos that answer."""
    try:
        with typer.progressbar(length=max(id_end - id_start + 1, 1), label="Scanning", file=sys.stderr) as bar:

            def _on_event(event: ScanEvent) -> None:
                if isinstance(event, Progress):
                    bar.update(1)
                elif isinstance(event, Found):
                    typer.echo(f"ID {event.device.id}  model {event.device.model_number}")

            service, notifier = _build_service(simulate, scan_listener=_on_event)
            outcome = asyncio.run(service.scan(port, protocol, baud, id_start, id_end))
        if outcome is None or notifier.failed:
            raise typer.Exit(code=1)
    except MttrError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read(
    device_id: int = typer.Argument(..., help="Servo ID"),
    simulate: Path = typer.Option(..., "--simulate", help=SIMULATE_HELP),
    port: str = typer.Option(..., "--port", help="Serial port"),
    protocol: str = typer.Option(DEFAULT_PROTOCOL, "--protocol", help="Protocol version (1.0 or 2.0)"),
    baud: int = typer.Option(DEFAULT_BAUD_RATE, "--baud", help="Baud rate"),
) -> None:
    """Read the full control table of one servo."""
    try:
        service, notifier = _build_service(simulate)
        if not asyncio.run(_connect(service, port, protocol, baud, device_id)) or notifier.failed:
            raise typer.Exit(code=1)
        model = service.model
        active = service.active
        if active is None:
            raise typer.Exit(code=1)
        if model is None:
            typer.echo(f"No control table for model {active.model_number}")
            return
        typer.echo(f"ID {device_id}: {model.name} on {port} ({protocol}, {baud} bps)")
        for field in model.fields:
            state = service.cache.get(field.address)
            unit = f" [{field.unit}]" if field.unit else ""
            typer.echo(f"  {field.address:>3} {field.name:<24} {field.access.value:<2} {format_state(field, state)}{unit}")
    except MttrError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("write")
def write(
    device_id: int = typer.Argument(..., help="Servo ID"),
    field_name: str = typer.Argument(..., help="Field name or address"),
    value: str = typer.Argument(..., help="New raw value"),
    simulate: Path = typer.Option(..., "--simulate", help=SIMULATE_HELP),
    port: str = typer.Option(..., "--port", help="Serial port"),
    protocol: str = typer.Option(DEFAULT_PROTOCOL, "--protocol", help="Protocol version (1.0 or 2.0)"),
    baud: int = typer.Option(DEFAULT_BAUD_RATE, "--baud", help="Baud rate"),
) -> None:
    """Write one field of a servo's control table."""
    try:
        service, notifier = _build_service(simulate)
        key: str | int = int(field_name) if field_name.isdigit() else field_name

        async def _run() -> bool | None:
            if not await _connect(service, port, protocol, baud, device_id):
                return None
            service.begin_edit(key)
            return await service.commit(key, value)

        written = asyncio.run(_run())
        if written is None or notifier.failed:
            raise typer.Exit(code=1)
        field = service.field(key)
        state = service.cache.get(field.address)
        verb = "Wrote" if written else "Unchanged"
        shown_id = service.active.id if service.active is not None else device_id
        typer.echo(f"{verb} {field.name}={format_state(field, state)} on ID {shown_id}")
    except MttrError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
