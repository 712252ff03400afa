"""BridgeContext: owns both endpoints, the mapping table, executor and scheduler, and their lifecycle."""

import asyncio
import logging

from .errors import ShutdownError
from .executor import CycleExecutor
from .scheduler import DEFAULT_PERIOD_S, BridgeScheduler
from .sink import MessageSink
from .source import TagSource
from .topics import TopicMappingTable, TopicNamespace
from .types import ConnectionState

logger = logging.getLogger(__name__)

SOURCE = "source"
SINK = "sink"


class BridgeContext:
    """
    Built once at startup and passed around instead of module-level singletons.

    Startup connects source and sink concurrently; if either fails, whichever did
    connect is released before the error propagates. Teardown releases the sink
    first, then the source, and only after the scheduler has stopped.
    """

    def __init__(
        self,
        source: TagSource,
        sink: MessageSink,
        table: TopicMappingTable,
        namespace: TopicNamespace,
        period_s: float = DEFAULT_PERIOD_S,
    ) -> None:
        self.source = source
        self.sink = sink
        self.table = table
        self.namespace = namespace
        self.executor = CycleExecutor(table, namespace, sink)
        self.scheduler = BridgeScheduler(source, self.executor, period_s)
        self._states: dict[str, ConnectionState] = {
            SOURCE: ConnectionState.DISCONNECTED,
            SINK: ConnectionState.DISCONNECTED,
        }
        served = set(source.tag_ids)
        unregistered = [tag for tag in table.tag_ids if tag not in served]
        if unregistered:
            logger.warning(
                "%d mapped tags are not served by %s and will always be skipped: %s",
                len(unregistered),
                source.name,
                ", ".join(unregistered),
            )

    @property
    def source_state(self) -> ConnectionState:
        return self._states[SOURCE]

    @property
    def sink_state(self) -> ConnectionState:
        return self._states[SINK]

    def _endpoint(self, role: str) -> TagSource | MessageSink:
        return self.source if role == SOURCE else self.sink

    async def _connect(self, role: str) -> None:
        self._states[role] = ConnectionState.CONNECTING
        try:
            await self._endpoint(role).connect()
        except BaseException:
            self._states[role] = ConnectionState.DISCONNECTED
            raise
        self._states[role] = ConnectionState.CONNECTED

    async def startup(self) -> None:
        """Connect both endpoints; raises the first connection error after cleaning up."""
        results = await asyncio.gather(self._connect(SOURCE), self._connect(SINK), return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            await self.shutdown()
            raise failures[0]

    async def _disconnect(self, role: str) -> ShutdownError | None:
        if self._states[role] == ConnectionState.DISCONNECTED:
            return None
        endpoint = self._endpoint(role)
        error = await endpoint.disconnect()
        self._states[role] = ConnectionState.DISCONNECTED
        if error is not None:
            logger.warning("Shutdown of %s %s: %s", role, endpoint.name, error)
        return error

    async def shutdown(self) -> list[ShutdownError]:
        """Release sink then source; errors are logged and returned, never raised."""
        errors: list[ShutdownError] = []
        for role in (SINK, SOURCE):
            error = await self._disconnect(role)
            if error is not None:
                errors.append(error)
        return errors

    async def __aenter__(self) -> "BridgeContext":
        await self.startup()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.shutdown()
