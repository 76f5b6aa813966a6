"""Command-line utility for the USB switch controller.

``serve`` runs the long-lived controller (device lifecycle plus HTTP control
API). The remaining commands open the serial link once, run a single command
through the same pipeline the controller uses, and print the reply.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, List, Optional

import typer  # type: ignore

from . import commands
from .commands import Command, ResponseParseError
from .config import Settings, load_settings
from .lifecycle import run_controller
from .pipeline import CommandPipeline, CommandTimeoutError, PipelineClosedError
from .serial_link import LinkError, SerialLink, list_devices

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Controller for a serial USB switch")

_COMMAND_ERRORS = (LinkError, CommandTimeoutError, PipelineClosedError, ResponseParseError)


def _settings(
    device: Optional[str],
    baudrate: Optional[int],
    parity: Optional[str],
    data_bits: Optional[int],
    **extra: Any,
) -> Settings:
    try:
        return load_settings(
            device=device,
            baudrate=baudrate,
            parity=parity.lower() if parity else None,
            data_bits=data_bits,
            **extra,
        )
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


async def _run_sequence(settings: Settings, sequence: List[Command[Any]]) -> List[Any]:
    link = SerialLink(
        settings.device,
        baudrate=settings.baudrate,
        parity=settings.parity,
        data_bits=settings.data_bits,
        silence_gap=settings.silence_gap,
    )
    pipeline = CommandPipeline(link, timeout=settings.command_timeout)
    await link.open_async()
    try:
        return [await pipeline.submit(command) for command in sequence]
    finally:
        await pipeline.aclose()


def _execute(settings: Settings, *sequence: Command[Any]) -> List[Any]:
    try:
        return asyncio.run(_run_sequence(settings, list(sequence)))
    except _COMMAND_ERRORS as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


DeviceOption = typer.Option(None, "--device", help="Serial device path (default /dev/ttyACM0).")
BaudrateOption = typer.Option(None, "--baudrate", help="Serial baud rate (default 9600).")
ParityOption = typer.Option(None, "--parity", help="Parity: none, even, odd, mark or space.")
DataBitsOption = typer.Option(None, "--data-bits", help="Data bits per character (5-8).")


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", help="HTTP port of the control API (default 3001)."),
    no_listen: bool = typer.Option(
        False, "--no-listen", help="Run without control API; exit once the device answers."
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Address the control API binds to."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Control request timeout in seconds."),
    device: Optional[str] = DeviceOption,
    baudrate: Optional[int] = BaudrateOption,
    parity: Optional[str] = ParityOption,
    data_bits: Optional[int] = DataBitsOption,
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Run the controller until it exits."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = _settings(
        device,
        baudrate,
        parity,
        data_bits,
        listen_port=port,
        listen_host=host,
        timeout=timeout,
        listen=not no_listen,
    )
    logger.info("Starting controller with %s", settings.describe())
    code = asyncio.run(run_controller(settings))
    raise typer.Exit(code=code)


@app.command()
def devices() -> None:
    """List the serial ports currently available."""

    paths = list_devices()
    if not paths:
        typer.echo("No serial devices detected.")
        return
    for path in paths:
        typer.echo(path)


@app.command()
def status(
    device: Optional[str] = DeviceOption,
    baudrate: Optional[int] = BaudrateOption,
    parity: Optional[str] = ParityOption,
    data_bits: Optional[int] = DataBitsOption,
) -> None:
    """Print the switch status report."""

    settings = _settings(device, baudrate, parity, data_bits)
    (report,) = _execute(settings, commands.status())
    typer.echo(report)


@app.command()
def version(
    device: Optional[str] = DeviceOption,
    baudrate: Optional[int] = BaudrateOption,
    parity: Optional[str] = ParityOption,
    data_bits: Optional[int] = DataBitsOption,
) -> None:
    """Print board and firmware version."""

    settings = _settings(device, baudrate, parity, data_bits)
    (text,) = _execute(settings, commands.version())
    typer.echo(text)


@app.command()
def route(
    source: Optional[int] = typer.Argument(
        None, help="Port to route and keep as power-on default; 0 disconnects."
    ),
    device: Optional[str] = DeviceOption,
    baudrate: Optional[int] = BaudrateOption,
    parity: Optional[str] = ParityOption,
    data_bits: Optional[int] = DataBitsOption,
) -> None:
    """Show the routed port, or route a new one."""

    settings = _settings(device, baudrate, parity, data_bits)
    if source is None:
        (number,) = _execute(settings, commands.port())
        typer.echo(str(number))
        return
    try:
        sequence = (commands.set_port(source), commands.set_default_port(source))
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc
    _execute(settings, *sequence)
    typer.echo(f"Routed port {source}")


@app.command()
def reset(
    device: Optional[str] = DeviceOption,
    baudrate: Optional[int] = BaudrateOption,
    parity: Optional[str] = ParityOption,
    data_bits: Optional[int] = DataBitsOption,
) -> None:
    """Reset the switch microcontroller."""

    settings = _settings(device, baudrate, parity, data_bits)
    _execute(settings, commands.reset())
    typer.echo("Reset command dispatched")


def main(argv: Optional[list[str]] = None) -> int:
    args = argv if argv is not None else sys.argv[1:]
    try:
        result = app(prog_name="usbswitch", args=args, standalone_mode=False)
    except typer.Exit as exc:
        return exc.exit_code
    except KeyboardInterrupt:  # pragma: no cover - interactive
        return 130
    except Exception as exc:  # pragma: no cover - safety net
        typer.secho(f"Unexpected error: {exc}", fg=typer.colors.RED)
        return 1
    return result if isinstance(result, int) else 0


def run() -> None:
    """Entry point for console_scripts."""

    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
