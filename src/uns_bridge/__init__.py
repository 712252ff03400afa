"""uns-bridge: publish OPC UA (or Modbus) process variables to MQTT under a Unified Namespace."""

__version__ = "0.1.0"

from .context import BridgeContext
from .envelope import decode_envelope, encode_envelope
from .errors import (
    BridgeConnectionError,
    MappingError,
    PublishError,
    ShutdownError,
    TagReadError,
    UnsBridgeError,
)
from .executor import CycleExecutor
from .scheduler import BridgeScheduler
from .sink import MessageSink, MqttMessageSink
from .source import OpcUaTagSource, TagSource
from .topics import TopicMappingTable, TopicNamespace, get_default_table
from .types import (
    ConnectionState,
    CycleResult,
    Envelope,
    MappingOutcome,
    OutcomeStatus,
    SchedulerState,
    Snapshot,
    TagValue,
    TopicMapping,
    ValueKind,
)

__all__ = [
    "__version__",
    "BridgeContext",
    "BridgeScheduler",
    "CycleExecutor",
    "decode_envelope",
    "encode_envelope",
    "BridgeConnectionError",
    "MappingError",
    "PublishError",
    "ShutdownError",
    "TagReadError",
    "UnsBridgeError",
    "MessageSink",
    "MqttMessageSink",
    "OpcUaTagSource",
    "TagSource",
    "TopicMappingTable",
    "TopicNamespace",
    "get_default_table",
    "ConnectionState",
    "CycleResult",
    "Envelope",
    "MappingOutcome",
    "OutcomeStatus",
    "SchedulerState",
    "Snapshot",
    "TagValue",
    "TopicMapping",
    "ValueKind",
]
