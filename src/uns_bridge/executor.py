"""CycleExecutor: publish one snapshot through the mapping table with per-mapping fault isolation."""

import logging
import time
from datetime import datetime, timezone

from .envelope import encode_envelope
from .errors import PublishError
from .sink import MessageSink
from .topics import TopicMappingTable, TopicNamespace
from .types import CycleResult, Envelope, MappingOutcome, OutcomeStatus, Snapshot, TagValue, TopicMapping

logger = logging.getLogger(__name__)


class CycleExecutor:
    """
    Walks the mapping table in order. For each mapping:

    - tag absent from the snapshot (or read as absent): skipped, nothing published;
    - otherwise one envelope stamped with the cycle's capture time is published to
      namespace prefix + "/" + suffix. A PublishError marks that mapping failed and
      the walk continues with the next mapping.

    Only recoverable errors are contained here; a BridgeConnectionError from the sink
    means the endpoint is gone and propagates to the scheduler.
    """

    def __init__(self, table: TopicMappingTable, namespace: TopicNamespace, sink: MessageSink) -> None:
        self._table = table
        self._namespace = namespace
        self._sink = sink
        self._routes: list[tuple[TopicMapping, str]] = table.topics(namespace)

    @property
    def routes(self) -> list[tuple[TopicMapping, str]]:
        return list(self._routes)

    async def _publish_one(
        self, mapping: TopicMapping, topic: str, value: TagValue, timestamp: datetime
    ) -> MappingOutcome:
        if value.is_absent:
            return MappingOutcome(mapping, topic, OutcomeStatus.SKIPPED)
        payload = encode_envelope(Envelope(timestamp=timestamp, value=value))
        try:
            await self._sink.publish(topic, payload)
        except PublishError as e:
            logger.warning("Publish to %s failed: %s", topic, e)
            return MappingOutcome(mapping, topic, OutcomeStatus.FAILED, error=e)
        return MappingOutcome(mapping, topic, OutcomeStatus.PUBLISHED)

    async def run(self, snapshot: Snapshot, started_at: datetime | None = None) -> CycleResult:
        """Publish every mapping of one snapshot; every mapping yields exactly one outcome."""
        timestamp = started_at if started_at is not None else datetime.now(timezone.utc)
        t0 = time.monotonic()
        outcomes: list[MappingOutcome] = []
        for mapping, topic in self._routes:
            outcomes.append(await self._publish_one(mapping, topic, snapshot.get(mapping.tag), timestamp))
        return CycleResult(started_at=timestamp, outcomes=tuple(outcomes), duration_s=time.monotonic() - t0)
