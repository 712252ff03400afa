"""In-memory TagSource / MessageSink used across the tests."""

import asyncio
from collections.abc import Mapping
from typing import Any

from uns_bridge.errors import BridgeConnectionError, PublishError, ShutdownError, TagReadError
from uns_bridge.types import Snapshot, TagValue


def snapshot_of(values: Mapping[str, Any], errors: Mapping[str, str] | None = None) -> Snapshot:
    """Snapshot from native values; tags listed in errors are absent."""
    tag_values = {tag: TagValue.from_python(v) for tag, v in values.items()}
    read_errors: dict[str, TagReadError] = {}
    for tag, msg in (errors or {}).items():
        tag_values[tag] = TagValue.absent()
        read_errors[tag] = TagReadError(tag, msg)
    return Snapshot(values=tag_values, errors=read_errors)


class FakeTagSource:
    def __init__(
        self,
        snapshots: list[Snapshot] | None = None,
        tag_ids: tuple[str, ...] = (),
        connect_error: BaseException | None = None,
        read_error: BaseException | None = None,
        read_delay: float = 0.0,
        events: list[Any] | None = None,
        shutdown_error: ShutdownError | None = None,
    ) -> None:
        self._snapshots = snapshots or [Snapshot(values={})]
        self._tag_ids = tag_ids
        self.connect_error = connect_error
        self.read_error = read_error
        self.read_delay = read_delay
        self.events = events if events is not None else []
        self.shutdown_error = shutdown_error
        self.connected = False
        self.reads = 0
        self.connect_calls = 0
        self.disconnect_calls = 0

    @property
    def name(self) -> str:
        return "fake-source"

    @property
    def tag_ids(self) -> tuple[str, ...]:
        return self._tag_ids

    async def connect(self) -> None:
        self.connect_calls += 1
        self.events.append("source.connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def read_all(self) -> Snapshot:
        self.reads += 1
        cycle = self.reads
        self.events.append(("read", cycle))
        if self.read_error is not None:
            raise self.read_error
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        self.events.append(("read-done", cycle))
        return self._snapshots[min(cycle - 1, len(self._snapshots) - 1)]

    async def disconnect(self) -> ShutdownError | None:
        self.disconnect_calls += 1
        self.events.append("source.disconnect")
        self.connected = False
        return self.shutdown_error


class FakeMessageSink:
    def __init__(
        self,
        failing_topics: tuple[str, ...] = (),
        lost_topics: tuple[str, ...] = (),
        connect_error: BaseException | None = None,
        publish_delay: float = 0.0,
        events: list[Any] | None = None,
        source: FakeTagSource | None = None,
        shutdown_error: ShutdownError | None = None,
    ) -> None:
        self.failing_topics = failing_topics
        self.lost_topics = lost_topics
        self.connect_error = connect_error
        self.publish_delay = publish_delay
        self.events = events if events is not None else []
        self.source = source
        self.shutdown_error = shutdown_error
        self.published: list[tuple[str, str]] = []
        self.attempts: list[str] = []
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0

    @property
    def name(self) -> str:
        return "fake-sink"

    async def connect(self) -> None:
        self.connect_calls += 1
        self.events.append("sink.connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def publish(self, topic: str, payload: str) -> None:
        self.attempts.append(topic)
        cycle = self.source.reads if self.source is not None else None
        self.events.append(("publish", cycle))
        if self.publish_delay:
            await asyncio.sleep(self.publish_delay)
        if topic in self.lost_topics:
            raise BridgeConnectionError("broker gone", endpoint=self.name)
        if topic in self.failing_topics:
            raise PublishError(topic, "ack timeout")
        self.published.append((topic, payload))

    async def disconnect(self) -> ShutdownError | None:
        self.disconnect_calls += 1
        self.events.append("sink.disconnect")
        self.connected = False
        return self.shutdown_error
