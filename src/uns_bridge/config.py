"""BridgeSettings and the factories that turn settings into endpoints and a BridgeContext."""

from dataclasses import dataclass
from pathlib import Path

from .context import BridgeContext
from .modbus_source import ModbusTagSource, load_register_map
from .scheduler import DEFAULT_PERIOD_S
from .sink import DEFAULT_BROKER, DEFAULT_CLIENT_ID, DEFAULT_PORT, MqttMessageSink
from .source import (
    DEFAULT_APP_NAME,
    DEFAULT_ENDPOINT,
    DEFAULT_NODE_TEMPLATE,
    OpcUaTagSource,
    TagSource,
    node_ids_from_list,
    node_ids_from_template,
)
from .topics import DEFAULT_NAMESPACE, TopicMappingTable, TopicNamespace, load_table

SOURCE_KINDS = ("opcua", "modbus")


@dataclass(frozen=True)
class BridgeSettings:
    """Every deployment parameter of the bridge; validated on construction."""

    source: str = "opcua"
    # OPC UA
    endpoint: str = DEFAULT_ENDPOINT
    app_name: str = DEFAULT_APP_NAME
    node_template: str = DEFAULT_NODE_TEMPLATE
    # Explicit node ids; when set, tags are named from the node ids instead of the template
    node_ids: tuple[str, ...] = ()
    security: str | None = None
    accept_untrusted: bool = False
    source_timeout: float = 4.0
    # Modbus
    modbus_host: str | None = None
    modbus_port: int = 502
    modbus_unit_id: int = 1
    register_map: Path | None = None
    # MQTT
    broker: str = DEFAULT_BROKER
    broker_port: int = DEFAULT_PORT
    client_id: str = DEFAULT_CLIENT_ID
    qos: int = 1
    publish_timeout: float = 5.0
    # Topics and cadence
    namespace: str = DEFAULT_NAMESPACE
    mapping: Path | None = None
    period_s: float = DEFAULT_PERIOD_S
    grace_s: float = 10.0

    def __post_init__(self) -> None:
        if self.source not in SOURCE_KINDS:
            raise ValueError(f"Invalid source {self.source!r}. Must be one of: {', '.join(SOURCE_KINDS)}")
        if self.period_s <= 0:
            raise ValueError(f"Period must be positive, got {self.period_s}")
        if self.grace_s < 0:
            raise ValueError(f"Grace period must not be negative, got {self.grace_s}")
        if self.source_timeout <= 0 or self.publish_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if not (0 < self.broker_port < 65536) or not (0 < self.modbus_port < 65536):
            raise ValueError("Ports must be in 1-65535")
        if self.qos not in (0, 1, 2):
            raise ValueError(f"QoS must be 0, 1 or 2, got {self.qos}")
        if "{tag}" not in self.node_template:
            raise ValueError(f"Node template must contain '{{tag}}': {self.node_template!r}")
        node_ids_from_list(self.node_ids)
        if self.source == "modbus":
            if not self.modbus_host:
                raise ValueError("Modbus source requires a host")
            if self.register_map is None:
                raise ValueError("Modbus source requires a register map")
        TopicNamespace.parse(self.namespace)


def build_namespace(settings: BridgeSettings) -> TopicNamespace:
    return TopicNamespace.parse(settings.namespace)


def build_table(settings: BridgeSettings) -> TopicMappingTable:
    """Load the mapping table; raises MappingError before anything connects."""
    return load_table(settings.mapping)


def build_source(settings: BridgeSettings, table: TopicMappingTable) -> TagSource:
    if settings.source == "modbus":
        return ModbusTagSource(
            load_register_map(settings.register_map),  # type: ignore[arg-type]
            host=settings.modbus_host,  # type: ignore[arg-type]
            port=settings.modbus_port,
            unit_id=settings.modbus_unit_id,
            timeout=settings.source_timeout,
        )
    if settings.node_ids:
        nodes = node_ids_from_list(settings.node_ids)
    else:
        nodes = node_ids_from_template(table.tag_ids, settings.node_template)
    return OpcUaTagSource(
        nodes,
        endpoint=settings.endpoint,
        app_name=settings.app_name,
        security=settings.security,
        accept_untrusted=settings.accept_untrusted,
        timeout=settings.source_timeout,
    )


def build_sink(settings: BridgeSettings) -> MqttMessageSink:
    return MqttMessageSink(
        broker=settings.broker,
        port=settings.broker_port,
        client_id=settings.client_id,
        qos=settings.qos,
        publish_timeout=settings.publish_timeout,
    )


def build_context(settings: BridgeSettings) -> BridgeContext:
    """Load and validate the table first, then create (not connect) both endpoints."""
    table = build_table(settings)
    namespace = build_namespace(settings)
    return BridgeContext(
        source=build_source(settings, table),
        sink=build_sink(settings),
        table=table,
        namespace=namespace,
        period_s=settings.period_s,
    )
