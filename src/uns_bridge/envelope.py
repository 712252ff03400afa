"""Payload wire format: a JSON object with exactly `timestamp` and `value`."""

import json
from datetime import datetime
from typing import Any

from .types import Envelope, TagValue, format_timestamp

_FIELDS = frozenset({"timestamp", "value"})


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to its JSON payload."""
    return json.dumps(
        {
            "timestamp": format_timestamp(envelope.timestamp),
            "value": envelope.value.to_json(),
        },
        separators=(",", ":"),
        allow_nan=False,
    )


def _parse_timestamp(raw: Any) -> datetime:
    if not isinstance(raw, str):
        raise ValueError(f"timestamp must be a string, got {type(raw).__name__}")
    s = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    ts = datetime.fromisoformat(s)
    if ts.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {raw!r}")
    return ts


def _parse_value(raw: Any) -> TagValue:
    if isinstance(raw, list):
        if not all(isinstance(item, str) for item in raw):
            raise ValueError("array values must contain only strings")
        return TagValue.text_array(raw)
    if raw is None or isinstance(raw, (int, float, str)):
        return TagValue.from_python(raw)
    raise ValueError(f"Unsupported value type: {type(raw).__name__}")


def decode_envelope(payload: str | bytes) -> Envelope:
    """Parse a published payload back into an Envelope; raises ValueError on a malformed payload."""
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("payload must be a JSON object")
    if set(data) != _FIELDS:
        raise ValueError(f"payload must have exactly {sorted(_FIELDS)}, got {sorted(data)}")
    return Envelope(timestamp=_parse_timestamp(data["timestamp"]), value=_parse_value(data["value"]))
