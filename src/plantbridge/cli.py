#!/usr/bin/env python3
"""Command-line interface for plantbridge using Typer."""

import asyncio
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from typing_extensions import Annotated

from . import __version__
from .bridge import Bridge, create_driver
from .config import BridgeConfig
from .errors import (
    InvalidAddressError,
    ProtocolIOError,
    ReadError,
    SessionError,
    UnknownTagError,
    ValidationError,
)
from .gateway import CommandGateway
from .poller import Poller
from .session import PlcSession
from .tagmap import AddressMap, load_address_map
from .types import MemoryArea, PlantSnapshot, Protocol

app = typer.Typer(
    name="plantbridge",
    help="Bridge between a batching-plant PLC (S7 / Modbus TCP) and its dashboard.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="PLC hostname or IP address", envvar="PLANTBRIDGE_HOST"),
]
ProtocolOption = Annotated[
    str,
    typer.Option("--protocol", "-P", help="PLC protocol: s7 or modbus", envvar="PLANTBRIDGE_PROTOCOL"),
]
PortOption = Annotated[
    Optional[int],
    typer.Option("--port", "-p", help="PLC TCP port (default 102 for s7, 502 for modbus)", envvar="PLANTBRIDGE_PORT"),
]
RackOption = Annotated[
    int,
    typer.Option("--rack", help="S7 rack", envvar="PLANTBRIDGE_RACK"),
]
SlotOption = Annotated[
    int,
    typer.Option("--slot", help="S7 slot", envvar="PLANTBRIDGE_SLOT"),
]
UnitIdOption = Annotated[
    int,
    typer.Option("--unit-id", "-u", help="Modbus unit ID", envvar="PLANTBRIDGE_UNIT_ID"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Connect/read/write timeout in seconds", envvar="PLANTBRIDGE_TIMEOUT"),
]
MapFileOption = Annotated[
    Optional[Path],
    typer.Option("--map-file", "-m", help="JSON mapping file (tag -> address); built-in map if absent", envvar="PLANTBRIDGE_MAP_FILE"),
]
SetpointMaxOption = Annotated[
    float,
    typer.Option("--setpoint-max", help="Upper bound for set-point writes (ARIDO1..3)", envvar="PLANTBRIDGE_SETPOINT_MAX"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool, default: int = logging.WARNING) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else default
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@contextmanager
def exit_on_error(verbose: bool) -> Iterator[None]:
    """Map plantbridge errors to exit codes: 2 usage/tag/value, 3 PLC I/O, 4 anything else."""
    try:
        yield
    except typer.Exit:
        raise
    except InvalidAddressError as e:
        typer.echo(f"Error: Invalid address: {e}", err=True)
        raise typer.Exit(2)
    except UnknownTagError as e:
        typer.echo(f"Error: Unknown tag: {e}", err=True)
        raise typer.Exit(2)
    except ValidationError as e:
        typer.echo(f"Error: Invalid value: {e}", err=True)
        raise typer.Exit(2)
    except (SessionError, ProtocolIOError) as e:
        typer.echo(f"Error: Connection/PLC error: {e}", err=True)
        raise typer.Exit(3)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


def build_config(host: Optional[str], protocol: str, port: Optional[int], **options: Any) -> BridgeConfig:
    """Create and return a BridgeConfig; exits with 2 when it is incomplete or invalid."""
    if not host:
        typer.echo("Error: --host is required for this command", err=True)
        raise typer.Exit(2)
    try:
        return BridgeConfig(plc_host=host, protocol=protocol, port=port, **options)  # type: ignore[arg-type]
    except ValueError as e:
        typer.echo(f"Error: Invalid configuration: {e}", err=True)
        raise typer.Exit(2)


def load_map(protocol: str, map_file: Optional[Path]) -> AddressMap:
    try:
        proto = Protocol(protocol.lower())
    except ValueError:
        typer.echo(f"Error: Invalid protocol '{protocol}'. Must be s7 or modbus.", err=True)
        raise typer.Exit(2)
    return load_address_map(proto, map_file)


def open_session(config: BridgeConfig, address_map: AddressMap) -> PlcSession:
    return PlcSession(create_driver(config), address_map, timeout=config.timeout)


def format_value(value: Any) -> str:
    """Format value for display: bools lowercase, floats with 2 decimal places."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def format_snapshot(snapshot: PlantSnapshot, tags: list[str]) -> str:
    pairs = " ".join(f"{tag}={format_value(snapshot.values.get(tag, '-'))}" for tag in tags)
    line = f"{snapshot.timestamp.isoformat()} {pairs} running={format_value(snapshot.running)}"
    if snapshot.error is not None:
        line += f" error={snapshot.error!r}"
    return line


# ============================================================================
# Commands
# ============================================================================

@app.command()
def serve(
    host: HostOption = None,
    protocol: ProtocolOption = "s7",
    port: PortOption = None,
    rack: RackOption = 0,
    slot: SlotOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    map_file: MapFileOption = None,
    setpoint_max: SetpointMaxOption = 100,
    poll_interval: Annotated[float, typer.Option("--poll-interval", "-i", help="Seconds between PLC polls", envvar="PLANTBRIDGE_POLL_INTERVAL")] = 1.0,
    pulse_duration: Annotated[float, typer.Option("--pulse-duration", help="Seconds INICIO/RESET stay true", envvar="PLANTBRIDGE_PULSE_DURATION")] = 0.1,
    hold_timeout: Annotated[float, typer.Option("--hold-timeout", help="Force a held control false after this many seconds", envvar="PLANTBRIDGE_HOLD_TIMEOUT")] = 30.0,
    listen_host: Annotated[str, typer.Option("--listen-host", help="HTTP/WebSocket bind address", envvar="PLANTBRIDGE_LISTEN_HOST")] = "0.0.0.0",
    listen_port: Annotated[int, typer.Option("--listen-port", "-l", help="HTTP/WebSocket port", envvar="PLANTBRIDGE_LISTEN_PORT")] = 4000,
    cors_origins: Annotated[
        Optional[list[str]],
        typer.Option("--cors-origin", help="Allowed CORS origin (repeatable; default *)", envvar="PLANTBRIDGE_CORS_ORIGINS"),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Run the bridge: poll the PLC, push snapshots over /ws, accept commands over HTTP and /ws.

    The PLC does not need to be reachable at startup; the poller keeps retrying and
    subscribers see degraded snapshots until it answers.
    """
    setup_logging(verbose, default=logging.INFO)
    config = build_config(
        host,
        protocol,
        port,
        rack=rack,
        slot=slot,
        unit_id=unit_id,
        timeout=timeout,
        poll_interval=poll_interval,
        setpoint_max=setpoint_max,
        pulse_duration=pulse_duration,
        hold_timeout=hold_timeout,
        map_file=map_file,
        listen_host=listen_host,
        listen_port=listen_port,
        cors_origins=tuple(cors_origins or ("*",)),
    )

    with exit_on_error(verbose):
        import uvicorn

        from .app import create_app

        bridge = Bridge.from_config(config)
        api = create_app(bridge, cors_origins=config.cors_origins)
        logger.info("Serving on %s:%d (PLC %s at %s:%d)", config.listen_host, config.listen_port, config.protocol.value, config.plc_host, config.port)
        uvicorn.run(api, host=config.listen_host, port=config.listen_port, log_level="debug" if verbose else "info")


@app.command()
def info(
    host: HostOption = None,
    protocol: ProtocolOption = "s7",
    port: PortOption = None,
    rack: RackOption = 0,
    slot: SlotOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    map_file: MapFileOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version, protocol and address map, and optionally test connectivity.

    Without --host: shows local metadata only.
    With --host: also tests connectivity.
    """
    setup_logging(verbose)

    with exit_on_error(verbose):
        amap = load_map(protocol, map_file)
        info_data: dict[str, Any] = {
            "version": __version__,
            "protocol": amap.protocol.value,
            "map_source": amap.source,
            "tags": len(amap),
        }

        if host:
            config = build_config(host, protocol, port, rack=rack, slot=slot, unit_id=unit_id, timeout=timeout)
            target = {"host": config.plc_host, "port": config.port}

            async def check() -> None:
                session = open_session(config, amap)
                try:
                    await session.connect()
                finally:
                    await session.close()

            try:
                asyncio.run(check())
                info_data["connectivity"] = {"status": "connected", **target}
            except SessionError as e:
                info_data["connectivity"] = {"status": "failed", "error": str(e), **target}

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"plantbridge version: {info_data['version']}")
        typer.echo(f"Protocol: {info_data['protocol']}")
        typer.echo(f"Address map: {info_data['map_source']} ({info_data['tags']} tags)")
        if "connectivity" in info_data:
            conn = info_data["connectivity"]
            if conn["status"] == "connected":
                typer.echo(f"Connectivity: OK ({conn['host']}:{conn['port']})")
            else:
                typer.echo(f"Connectivity: FAILED ({conn['host']}:{conn['port']}) - {conn['error']}")


@app.command()
def read(
    tags: Annotated[list[str], typer.Argument(help="Tags to read (e.g. ARIDO1 PESO COMP1)")],
    host: HostOption = None,
    protocol: ProtocolOption = "s7",
    port: PortOption = None,
    rack: RackOption = 0,
    slot: SlotOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    map_file: MapFileOption = None,
    verbose: VerboseOption = False,
    partial: Annotated[bool, typer.Option("--partial", help="Return partial results if some tags fail")] = False,
) -> None:
    """
    Read tags in a single batch and print them as JSON.

    By default, fails entirely if any tag is unknown or not returned by the PLC.
    Use --partial to get {"values": ..., "errors": ...} instead.
    """
    setup_logging(verbose)
    config = build_config(host, protocol, port, rack=rack, slot=slot, unit_id=unit_id, timeout=timeout, map_file=map_file)

    with exit_on_error(verbose):
        amap = load_address_map(config.protocol, config.map_file)
        errors: dict[str, str] = {}
        if partial:
            valid = [t for t in tags if t in amap]
            errors.update({t: str(UnknownTagError(t)) for t in tags if t not in amap})
        else:
            amap.require(tags)
            valid = list(tags)

        async def read_tags() -> dict[str, Any]:
            session = open_session(config, amap)
            try:
                await session.connect()
                return await session.read_all(valid) if valid else {}
            finally:
                await session.close()

        try:
            values = asyncio.run(read_tags())
        except ReadError as e:
            if not partial:
                raise
            values = {}
            errors.update({t: f"PLC error: {e}" for t in valid})

        missing = [t for t in valid if t not in values and t not in errors]
        if missing and not partial:
            raise ReadError(f"No value returned for {', '.join(missing)}")
        errors.update({t: "not returned by PLC" for t in missing})

        if partial:
            output: dict[str, Any] = {"values": values}
            if errors:
                output["errors"] = errors
            typer.echo(json.dumps(output, indent=2))
        else:
            typer.echo(json.dumps(values, indent=2))


@app.command()
def write(
    tag: Annotated[str, typer.Argument(help="Tag to write (e.g. ARIDO1, COMP2, INICIO)")],
    value: Annotated[str, typer.Argument(help="Value (bool: true/false/1/0/on/off/yes/no; number: decimal or 0x hex)")],
    host: HostOption = None,
    protocol: ProtocolOption = "s7",
    port: PortOption = None,
    rack: RackOption = 0,
    slot: SlotOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    map_file: MapFileOption = None,
    setpoint_max: SetpointMaxOption = 100,
    pulse_duration: Annotated[float, typer.Option("--pulse-duration", help="Seconds INICIO/RESET stay true", envvar="PLANTBRIDGE_PULSE_DURATION")] = 0.1,
    verbose: VerboseOption = False,
) -> None:
    """
    Send one command through the same validation the dashboard uses.

    ARIDO1..3 are range-checked set points; INICIO/RESET true sends a pulse
    (INICIO only if a set point is above zero); MANUAL is pressed and released.
    """
    setup_logging(verbose)
    config = build_config(host, protocol, port, rack=rack, slot=slot, unit_id=unit_id, timeout=timeout, map_file=map_file)

    with exit_on_error(verbose):
        amap = load_address_map(config.protocol, config.map_file)
        amap.resolve(tag)

        async def send() -> str:
            session = open_session(config, amap)
            gateway = CommandGateway(session, setpoint_max=setpoint_max, pulse_duration=pulse_duration)
            try:
                await session.connect()
                command = await gateway.write(tag, value, owner="cli")
                return command.kind.value
            finally:
                await gateway.aclose()
                await session.close()

        kind = asyncio.run(send())
        typer.echo(f"OK: Wrote {tag} = {value} ({kind})")


@app.command()
def explain(
    tag: Annotated[Optional[str], typer.Argument(help="Tag to explain; all tags if omitted")] = None,
    protocol: ProtocolOption = "s7",
    map_file: MapFileOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show the physical address each tag resolves to.

    Does not require connection; uses the mapping file or the built-in map only.
    """
    setup_logging(verbose)

    with exit_on_error(verbose):
        amap = load_map(protocol, map_file)
        pairs = [(tag, amap.resolve(tag))] if tag else list(amap.items())
        rows = [
            {
                "tag": name,
                "address": str(addr),
                "area": addr.area.value,
                "db_number": addr.db_number if addr.area is MemoryArea.DB else None,
                "offset": addr.offset,
                "bit": addr.bit,
                "kind": addr.kind.value,
                "writable": addr.area.writable,
            }
            for name, addr in pairs
        ]

    if json_output:
        typer.echo(json.dumps(rows[0] if tag else rows, indent=2))
    elif tag:
        row = rows[0]
        typer.echo(f"Tag:       {row['tag']}")
        typer.echo(f"Address:   {row['address']}")
        typer.echo(f"Area:      {row['area']}")
        if row["db_number"] is not None:
            typer.echo(f"DB:        {row['db_number']}")
        typer.echo(f"Offset:    {row['offset']}")
        if row["bit"] is not None:
            typer.echo(f"Bit:       {row['bit']}")
        typer.echo(f"Kind:      {row['kind']}")
        typer.echo(f"Writable:  {str(row['writable']).lower()}")
    else:
        typer.echo(f"# {amap.source} ({amap.protocol.value})")
        for row in rows:
            typer.echo(f"{row['tag']:<10} {row['address']:<14} {row['kind']}")


@app.command()
def poll(
    tags: Annotated[Optional[list[str]], typer.Argument(help="Tags to poll; every mapped tag if omitted")] = None,
    host: HostOption = None,
    protocol: ProtocolOption = "s7",
    port: PortOption = None,
    rack: RackOption = 0,
    slot: SlotOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    map_file: MapFileOption = None,
    verbose: VerboseOption = False,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Polling interval in seconds")] = 1.0,
    once: Annotated[bool, typer.Option("--once", help="Poll once and exit")] = False,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: text, json")] = "text",
) -> None:
    """
    Poll tags on an interval and print one snapshot per cycle.

    Outputs format:
    - text: timestamp + name=value pairs + running (default)
    - json: NDJSON, one snapshot per line in the same shape /ws sends

    Unreachable PLCs print degraded snapshots and keep retrying; with --once
    a degraded snapshot exits with code 3.
    Press Ctrl+C to stop gracefully.
    """
    setup_logging(verbose)

    if format not in ("text", "json"):
        typer.echo(f"Error: Invalid format '{format}'. Must be text or json.", err=True)
        raise typer.Exit(2)

    if interval <= 0:
        typer.echo(f"Error: Interval must be positive, got {interval}", err=True)
        raise typer.Exit(2)

    config = build_config(host, protocol, port, rack=rack, slot=slot, unit_id=unit_id, timeout=timeout, map_file=map_file)

    with exit_on_error(verbose):
        amap = load_address_map(config.protocol, config.map_file)
        names = list(tags) if tags else list(amap.tags)
        amap.require(names)

        async def emit(snapshot: PlantSnapshot) -> None:
            if format == "json":
                typer.echo(json.dumps(snapshot.to_dict()))
            else:
                typer.echo(format_snapshot(snapshot, names))

        async def run() -> PlantSnapshot | None:
            session = open_session(config, amap)
            poller = Poller(session, names, emit, interval=interval)
            try:
                if once:
                    return await poller.tick()
                await poller.run()
                return None
            finally:
                await session.close()

        last = asyncio.run(run())
        if last is not None and not last.ok:
            raise typer.Exit(3)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"plantbridge {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """plantbridge - S7 / Modbus TCP bridge for a concrete-batching plant PLC."""
    pass


if __name__ == "__main__":
    app()
