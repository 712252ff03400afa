#!/usr/bin/env python3
"""CLI for uns-bridge using Typer."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .config import BridgeSettings, build_context, build_namespace, build_source, build_table
from .errors import BridgeConnectionError, MappingError
from .modbus_source import load_register_map
from .runtime import EXIT_CONNECTION, EXIT_UNEXPECTED, EXIT_USAGE, run_bridge
from .source import TagSource
from .topics import DEFAULT_NAMESPACE, TopicMappingTable

app = typer.Typer(
    name="uns-bridge",
    help="Bridge OPC UA (or Modbus) process variables to MQTT under a Unified Namespace topic tree.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

SourceOption = Annotated[
    str,
    typer.Option("--source", help="Tag source: opcua or modbus", envvar="UNS_BRIDGE_SOURCE"),
]
EndpointOption = Annotated[
    str,
    typer.Option("--endpoint", "-e", help="OPC UA endpoint URL", envvar="UNS_BRIDGE_ENDPOINT"),
]
AppNameOption = Annotated[
    str,
    typer.Option("--app-name", help="OPC UA application name", envvar="UNS_BRIDGE_APP_NAME"),
]
NodeTemplateOption = Annotated[
    str,
    typer.Option(
        "--node-template",
        help="OPC UA node id for a tag, with {tag} placeholder",
        envvar="UNS_BRIDGE_NODE_TEMPLATE",
    ),
]
NodeOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--node",
        help="Explicit OPC UA node id to read (repeatable); the tag is the last dotted segment",
        envvar="UNS_BRIDGE_NODES",
    ),
]
SecurityOption = Annotated[
    Optional[str],
    typer.Option(
        "--security",
        help="OPC UA security string: Policy,Mode,client_cert,client_key[,server_cert]",
        envvar="UNS_BRIDGE_SECURITY",
    ),
]
AcceptUntrustedOption = Annotated[
    bool,
    typer.Option(
        "--accept-untrusted",
        help="Allow an unauthenticated, unencrypted OPC UA session (audited)",
        envvar="UNS_BRIDGE_ACCEPT_UNTRUSTED",
    ),
]
SourceTimeoutOption = Annotated[
    float,
    typer.Option("--source-timeout", help="Tag source request timeout in seconds", envvar="UNS_BRIDGE_SOURCE_TIMEOUT"),
]
ModbusHostOption = Annotated[
    Optional[str],
    typer.Option("--modbus-host", help="Modbus device hostname or IP address", envvar="UNS_BRIDGE_MODBUS_HOST"),
]
ModbusPortOption = Annotated[
    int,
    typer.Option("--modbus-port", help="Modbus TCP port", envvar="UNS_BRIDGE_MODBUS_PORT"),
]
UnitIdOption = Annotated[
    int,
    typer.Option("--modbus-unit-id", help="Modbus unit ID", envvar="UNS_BRIDGE_MODBUS_UNIT_ID"),
]
RegisterMapOption = Annotated[
    Optional[Path],
    typer.Option("--register-map", help="Register map JSON (Modbus source)", envvar="UNS_BRIDGE_REGISTER_MAP"),
]
BrokerOption = Annotated[
    str,
    typer.Option("--broker", "-b", help="MQTT broker hostname", envvar="UNS_BRIDGE_BROKER"),
]
BrokerPortOption = Annotated[
    int,
    typer.Option("--broker-port", help="MQTT broker port", envvar="UNS_BRIDGE_BROKER_PORT"),
]
ClientIdOption = Annotated[
    str,
    typer.Option("--client-id", help="MQTT client identifier", envvar="UNS_BRIDGE_CLIENT_ID"),
]
QosOption = Annotated[
    int,
    typer.Option("--qos", help="MQTT QoS level for publishes", envvar="UNS_BRIDGE_QOS"),
]
PublishTimeoutOption = Annotated[
    float,
    typer.Option("--publish-timeout", help="Seconds to wait for a publish ack", envvar="UNS_BRIDGE_PUBLISH_TIMEOUT"),
]
NamespaceOption = Annotated[
    str,
    typer.Option("--namespace", "-n", help="Topic prefix, e.g. v1/acme/site/area/line", envvar="UNS_BRIDGE_NAMESPACE"),
]
MappingOption = Annotated[
    Optional[Path],
    typer.Option("--mapping", "-m", help="Mapping table JSON (default: packaged filling line)", envvar="UNS_BRIDGE_MAPPING"),
]
PeriodOption = Annotated[
    float,
    typer.Option("--period", help="Publish period in seconds", envvar="UNS_BRIDGE_PERIOD"),
]
GraceOption = Annotated[
    float,
    typer.Option("--grace", help="Seconds to let an in-flight cycle finish on shutdown", envvar="UNS_BRIDGE_GRACE"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool, level: int = logging.WARNING) -> None:
    """Configure logging; verbose switches to DEBUG with logger names."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s" if verbose else "%(asctime)s %(levelname)s: %(message)s",
    )


def make_settings(**kwargs: Any) -> BridgeSettings:
    """Build BridgeSettings from CLI options; invalid combinations exit with code 2."""
    try:
        return BridgeSettings(**kwargs)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)


def load_mapping(mapping: Optional[Path]) -> TopicMappingTable:
    try:
        return build_table(BridgeSettings(mapping=mapping))
    except MappingError as e:
        typer.echo(f"Error: Invalid mapping table: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)


async def read_snapshot(source: TagSource) -> dict[str, Any]:
    """Connect, read one snapshot, disconnect; values as JSON plus per-tag errors."""
    await source.connect()
    try:
        snapshot = await source.read_all()
    finally:
        error = await source.disconnect()
        if error is not None:
            logger.warning("%s", error)
    values = {tag: value.to_json() for tag, value in snapshot.values.items() if not value.is_absent}
    output: dict[str, Any] = {"values": values}
    if snapshot.errors:
        output["errors"] = {tag: str(err) for tag, err in snapshot.errors.items()}
    return output


# ============================================================================
# Commands
# ============================================================================


@app.command()
def run(
    source: SourceOption = "opcua",
    endpoint: EndpointOption = "opc.tcp://localhost:4840",
    app_name: AppNameOption = "OpcMqttBridge",
    node_template: NodeTemplateOption = "ns=2;s=BeverageFillingLine.{tag}",
    node: NodeOption = None,
    security: SecurityOption = None,
    accept_untrusted: AcceptUntrustedOption = False,
    source_timeout: SourceTimeoutOption = 4.0,
    modbus_host: ModbusHostOption = None,
    modbus_port: ModbusPortOption = 502,
    modbus_unit_id: UnitIdOption = 1,
    register_map: RegisterMapOption = None,
    broker: BrokerOption = "localhost",
    broker_port: BrokerPortOption = 1883,
    client_id: ClientIdOption = "beverage-filling-line-bridge",
    qos: QosOption = 1,
    publish_timeout: PublishTimeoutOption = 5.0,
    namespace: NamespaceOption = DEFAULT_NAMESPACE,
    mapping: MappingOption = None,
    period: PeriodOption = 3.0,
    grace: GraceOption = 10.0,
    verbose: VerboseOption = False,
    once: Annotated[bool, typer.Option("--once", help="Run a single cycle and exit")] = False,
) -> None:
    """
    Run the bridge: read every mapped tag and publish it each period until SIGINT/SIGTERM.

    Exits 0 on a graceful stop, 2 on invalid configuration or mapping table,
    3 when an endpoint cannot connect or is lost, 4 on an unexpected error.
    """
    setup_logging(verbose, logging.INFO)

    settings = make_settings(
        source=source,
        endpoint=endpoint,
        app_name=app_name,
        node_template=node_template,
        node_ids=tuple(node or ()),
        security=security,
        accept_untrusted=accept_untrusted,
        source_timeout=source_timeout,
        modbus_host=modbus_host,
        modbus_port=modbus_port,
        modbus_unit_id=modbus_unit_id,
        register_map=register_map,
        broker=broker,
        broker_port=broker_port,
        client_id=client_id,
        qos=qos,
        publish_timeout=publish_timeout,
        namespace=namespace,
        mapping=mapping,
        period_s=period,
        grace_s=grace,
    )
    try:
        context = build_context(settings)
    except MappingError as e:
        typer.echo(f"Error: Invalid mapping table: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)

    typer.echo(f"Bridging {context.source.name} -> {context.sink.name} under {context.namespace.prefix}")
    if not once:
        typer.echo(f"Bridge active. Publishing every {settings.period_s:g} seconds... Press Ctrl+C to stop.")

    code = asyncio.run(run_bridge(context, grace_s=settings.grace_s, max_cycles=1 if once else None))
    if once and context.scheduler.last_result is not None:
        typer.echo(json.dumps(context.scheduler.last_result.counts()))
    raise typer.Exit(code)


@app.command()
def topics(
    namespace: NamespaceOption = DEFAULT_NAMESPACE,
    mapping: MappingOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show the full topic of every mapping.

    Does not require a connection; uses the mapping table only.
    """
    settings = make_settings(namespace=namespace, mapping=mapping)
    table = load_mapping(mapping)
    routes = table.topics(build_namespace(settings))

    if json_output:
        typer.echo(json.dumps([{"tag": m.tag, "suffix": m.suffix, "topic": t} for m, t in routes], indent=2))
    else:
        width = max((len(m.tag) for m, _ in routes), default=0)
        for m, t in routes:
            typer.echo(f"{m.tag:<{width}}  {t}")


@app.command()
def validate(
    mapping: MappingOption = None,
    register_map: RegisterMapOption = None,
) -> None:
    """
    Load and check the mapping table (and a Modbus register map, if given).

    Exits 2 if a suffix is duplicated or an entry is malformed.
    """
    table = load_mapping(mapping)
    typer.echo(f"OK: {len(table)} mappings, {len(table.tag_ids)} tags")
    if register_map is not None:
        try:
            registers = load_register_map(register_map)
        except MappingError as e:
            typer.echo(f"Error: Invalid register map: {e}", err=True)
            raise typer.Exit(EXIT_USAGE)
        served = {r.tag for r in registers}
        missing = [tag for tag in table.tag_ids if tag not in served]
        typer.echo(f"OK: {len(registers)} registers")
        if missing:
            typer.echo(f"Warning: mapped tags without a register: {', '.join(missing)}", err=True)


@app.command()
def read(
    source: SourceOption = "opcua",
    endpoint: EndpointOption = "opc.tcp://localhost:4840",
    app_name: AppNameOption = "OpcMqttBridge",
    node_template: NodeTemplateOption = "ns=2;s=BeverageFillingLine.{tag}",
    node: NodeOption = None,
    security: SecurityOption = None,
    accept_untrusted: AcceptUntrustedOption = False,
    source_timeout: SourceTimeoutOption = 4.0,
    modbus_host: ModbusHostOption = None,
    modbus_port: ModbusPortOption = 502,
    modbus_unit_id: UnitIdOption = 1,
    register_map: RegisterMapOption = None,
    mapping: MappingOption = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Read one snapshot from the tag source and print it as JSON.

    Unreadable tags are listed under "errors" instead of failing the read.
    """
    setup_logging(verbose)

    settings = make_settings(
        source=source,
        endpoint=endpoint,
        app_name=app_name,
        node_template=node_template,
        node_ids=tuple(node or ()),
        security=security,
        accept_untrusted=accept_untrusted,
        source_timeout=source_timeout,
        modbus_host=modbus_host,
        modbus_port=modbus_port,
        modbus_unit_id=modbus_unit_id,
        register_map=register_map,
        mapping=mapping,
    )
    table = load_mapping(mapping)
    try:
        tag_source = build_source(settings, table)
    except MappingError as e:
        typer.echo(f"Error: Invalid register map: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)

    try:
        output = asyncio.run(read_snapshot(tag_source))
    except BridgeConnectionError as e:
        typer.echo(f"Error: Connection error: {e}", err=True)
        raise typer.Exit(EXIT_CONNECTION)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(EXIT_UNEXPECTED)
    typer.echo(json.dumps(output, indent=2))


@app.command()
def info(
    namespace: NamespaceOption = DEFAULT_NAMESPACE,
    mapping: MappingOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show package version, topic namespace and mapping table size."""
    settings = make_settings(namespace=namespace, mapping=mapping)
    table = load_mapping(mapping)
    info_data = {
        "version": __version__,
        "namespace": build_namespace(settings).prefix,
        "mapping": str(mapping) if mapping else "packaged:filling_line",
        "mappings": len(table),
        "tags": len(table.tag_ids),
    }

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"uns-bridge version: {info_data['version']}")
        typer.echo(f"Namespace: {info_data['namespace']}")
        typer.echo(f"Mapping table: {info_data['mapping']} ({info_data['mappings']} mappings)")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"uns-bridge {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """uns-bridge - publish industrial tags to MQTT under a Unified Namespace."""
    pass


if __name__ == "__main__":
    app()
