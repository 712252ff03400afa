"""Core data model: tag value union, topic mapping, envelope, snapshot, cycle outcomes and states."""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from .errors import PublishError, TagReadError


class ValueKind(str, Enum):
    """Variants of a tag value."""

    ABSENT = "absent"
    NULL = "null"
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    TEXT_ARRAY = "text_array"


@dataclass(frozen=True)
class TagValue:
    """
    Tagged union over {absent, null, integer, float, text, text-array}.

    `absent` means the tag could not be read (or is not in the snapshot) and is never published;
    `null` is a successfully read empty value and is published as JSON null.
    """

    kind: ValueKind
    data: int | float | str | tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        kind, data = self.kind, self.data
        if kind in (ValueKind.ABSENT, ValueKind.NULL):
            ok = data is None
        elif kind == ValueKind.INTEGER:
            ok = isinstance(data, int) and not isinstance(data, bool)
        elif kind == ValueKind.FLOAT:
            ok = isinstance(data, float)
        elif kind == ValueKind.TEXT:
            ok = isinstance(data, str)
        elif kind == ValueKind.TEXT_ARRAY:
            ok = isinstance(data, tuple) and all(isinstance(item, str) for item in data)
        else:
            raise ValueError(f"Unknown value kind: {kind!r}")
        if not ok:
            raise ValueError(f"Invalid data for {kind.value} value: {data!r}")

    @classmethod
    def absent(cls) -> "TagValue":
        return cls(ValueKind.ABSENT)

    @classmethod
    def null(cls) -> "TagValue":
        return cls(ValueKind.NULL)

    @classmethod
    def integer(cls, value: int) -> "TagValue":
        return cls(ValueKind.INTEGER, int(value))

    @classmethod
    def floating(cls, value: float) -> "TagValue":
        return cls(ValueKind.FLOAT, float(value))

    @classmethod
    def text(cls, value: str) -> "TagValue":
        return cls(ValueKind.TEXT, value)

    @classmethod
    def text_array(cls, items: Iterable[str]) -> "TagValue":
        return cls(ValueKind.TEXT_ARRAY, tuple(items))

    @classmethod
    def from_python(cls, raw: Any) -> "TagValue":
        """
        Coerce a native value read from a tag source into the union.

        None -> null, bool/int -> integer, float -> float, str -> text,
        datetime/date -> ISO-8601 text, list/tuple -> text array (items stringified),
        anything else -> text via str().
        """
        if raw is None:
            return cls.null()
        if isinstance(raw, TagValue):
            return raw
        if isinstance(raw, bool):
            return cls.integer(int(raw))
        if isinstance(raw, int):
            return cls.integer(raw)
        if isinstance(raw, float):
            return cls.floating(raw)
        if isinstance(raw, str):
            return cls.text(raw)
        if isinstance(raw, datetime):
            if raw.tzinfo is None:
                raw = raw.replace(tzinfo=timezone.utc)
            return cls.text(format_timestamp(raw))
        if isinstance(raw, date):
            return cls.text(raw.isoformat())
        if isinstance(raw, (list, tuple)):
            return cls.text_array(item if isinstance(item, str) else str(item) for item in raw)
        return cls.text(str(raw))

    @property
    def is_absent(self) -> bool:
        return self.kind == ValueKind.ABSENT

    def to_json(self) -> Any:
        """JSON-typed form of the value; absent values have no JSON form."""
        kind = self.kind
        if kind == ValueKind.NULL:
            return None
        if kind == ValueKind.INTEGER:
            return self.data
        if kind == ValueKind.FLOAT:
            # NaN and infinities are not representable in JSON
            return self.data if math.isfinite(self.data) else None  # type: ignore[arg-type]
        if kind == ValueKind.TEXT:
            return self.data
        if kind == ValueKind.TEXT_ARRAY:
            return list(self.data)  # type: ignore[arg-type]
        if kind == ValueKind.ABSENT:
            raise ValueError("Absent tag values cannot be serialized")
        raise ValueError(f"Unknown value kind: {kind!r}")


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a 'Z' suffix."""
    if ts.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    utc = ts.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class TopicMapping:
    """One row of the mapping table: tag identifier -> topic suffix."""

    tag: str
    suffix: str


@dataclass(frozen=True)
class Envelope:
    """Timestamped wrapper published for one mapping in one cycle."""

    timestamp: datetime
    value: TagValue

    def __post_init__(self) -> None:
        if self.timestamp.tzinfo is None:
            raise ValueError("Envelope timestamp must be timezone-aware (UTC)")
        if self.value.is_absent:
            raise ValueError("Envelope cannot wrap an absent value")


@dataclass(frozen=True)
class Snapshot:
    """Values from one read_all() call, plus the per-tag read errors that made some of them absent."""

    values: Mapping[str, TagValue]
    errors: Mapping[str, TagReadError] = field(default_factory=dict)

    def get(self, tag: str) -> TagValue:
        return self.values.get(tag, TagValue.absent())

    def __len__(self) -> int:
        return len(self.values)

    def __contains__(self, tag: object) -> bool:
        return tag in self.values


class OutcomeStatus(str, Enum):
    PUBLISHED = "published"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class MappingOutcome:
    """What happened to one mapping during one cycle."""

    mapping: TopicMapping
    topic: str
    status: OutcomeStatus
    error: PublishError | None = None


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one cycle; counts are derived from the per-mapping outcomes."""

    started_at: datetime
    outcomes: tuple[MappingOutcome, ...] = ()
    duration_s: float = 0.0

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def published(self) -> int:
        return self._count(OutcomeStatus.PUBLISHED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def counts(self) -> dict[str, int]:
        return {"published": self.published, "skipped": self.skipped, "failed": self.failed}


class ConnectionState(str, Enum):
    """Per-endpoint connection state, owned by the bridge context."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
