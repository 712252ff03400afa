"""TagSource contract and the OPC UA implementation (asyncua)."""

import asyncio
import logging
import socket
from collections.abc import Iterable, Mapping
from typing import Protocol

from asyncua import Client, ua

from .errors import BridgeConnectionError, ShutdownError, TagReadError
from .types import Snapshot, TagValue

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "opc.tcp://localhost:4840"
DEFAULT_APP_NAME = "OpcMqttBridge"
DEFAULT_NODE_TEMPLATE = "ns=2;s=BeverageFillingLine.{tag}"

# Errors that mean the session itself is gone, not just one node
_SESSION_ERRORS = (ua.UaError, OSError, asyncio.TimeoutError)


class TagSource(Protocol):
    """Industrial data source serving current values for a fixed set of tags."""

    @property
    def name(self) -> str: ...

    @property
    def tag_ids(self) -> tuple[str, ...]: ...

    async def connect(self) -> None:
        """Open a session; raise BridgeConnectionError on failure."""
        ...

    async def read_all(self) -> Snapshot:
        """Read every registered tag; a failing tag is reported absent, never raised."""
        ...

    async def disconnect(self) -> ShutdownError | None:
        """Release the session. Idempotent; returns the failure instead of raising it."""
        ...


def node_ids_from_template(tags: Iterable[str], template: str = DEFAULT_NODE_TEMPLATE) -> dict[str, str]:
    """Build {tag: node id} by formatting the template with each tag, e.g. 'ns=2;s=Line.{tag}'."""
    if "{tag}" not in template:
        raise ValueError(f"Node template must contain '{{tag}}': {template!r}")
    return {tag: template.format(tag=tag) for tag in tags}


def tag_from_node_id(node_id: str) -> str:
    """Tag identifier for a node id: last '.'-separated segment of its identifier part."""
    ident = node_id.rsplit(";", 1)[-1]
    if "=" in ident:
        ident = ident.split("=", 1)[1]
    return ident.rsplit(".", 1)[-1]


def node_ids_from_list(node_ids: Iterable[str]) -> dict[str, str]:
    """Build {tag: node id} from explicit node ids, naming each tag with tag_from_node_id."""
    nodes: dict[str, str] = {}
    for node_id in node_ids:
        tag = tag_from_node_id(node_id)
        if not tag:
            raise ValueError(f"Cannot derive a tag from node id {node_id!r}")
        if tag in nodes:
            raise ValueError(f"Node ids {nodes[tag]!r} and {node_id!r} both map to tag {tag!r}")
        nodes[tag] = node_id
    return nodes


class OpcUaTagSource:
    """
    Reads a fixed set of OPC UA variables with one session.

    Connecting without a security string means the server is not authenticated and
    traffic is unencrypted; that requires accept_untrusted=True and is logged as an audit line.
    """

    def __init__(
        self,
        nodes: Mapping[str, str],
        endpoint: str = DEFAULT_ENDPOINT,
        app_name: str = DEFAULT_APP_NAME,
        security: str | None = None,
        accept_untrusted: bool = False,
        timeout: float = 4.0,
    ) -> None:
        if not nodes:
            raise ValueError("OpcUaTagSource needs at least one node")
        self._nodes = dict(nodes)
        self._endpoint = endpoint
        self._app_name = app_name
        self._security = security
        self._accept_untrusted = accept_untrusted
        self._timeout = timeout
        self._client: Client | None = None

    @property
    def name(self) -> str:
        return self._endpoint

    @property
    def tag_ids(self) -> tuple[str, ...]:
        return tuple(self._nodes)

    def _create_client(self) -> Client:
        client = Client(url=self._endpoint, timeout=self._timeout)
        client.name = self._app_name
        client.description = self._app_name
        client.application_uri = f"urn:{socket.gethostname()}:{self._app_name}"
        return client

    async def connect(self) -> None:
        """Open the session; an insecure endpoint is refused unless untrusted peers are accepted."""
        if self._client is not None:
            return
        if self._security is None and not self._accept_untrusted:
            raise BridgeConnectionError(
                f"Refusing unauthenticated connection to {self._endpoint}: "
                "set a security string or explicitly accept untrusted peers",
                endpoint=self._endpoint,
            )
        client = self._create_client()
        try:
            if self._security is not None:
                await client.set_security_string(self._security)
            else:
                logger.warning(
                    "AUDIT: accepting unverified OPC UA peer at %s (no security policy, anonymous identity)",
                    self._endpoint,
                )
            await client.connect()
        except (*_SESSION_ERRORS, ValueError) as e:
            raise BridgeConnectionError(
                f"Failed to connect to OPC UA server {self._endpoint}: {e}",
                endpoint=self._endpoint,
                cause=e,
            ) from e
        self._client = client
        logger.info("Connected to OPC UA server %s as %s", self._endpoint, client.application_uri)

    async def _read_one(self, client: Client, tag: str, node_id: str) -> TagValue:
        try:
            raw = await client.get_node(node_id).read_value()
        except Exception as e:
            raise TagReadError(tag, f"Error reading {node_id}: {e}", node=node_id, cause=e) from e
        return TagValue.from_python(raw)

    async def read_all(self) -> Snapshot:
        if self._client is None:
            raise BridgeConnectionError("OPC UA source is not connected", endpoint=self._endpoint)
        client = self._client
        try:
            await client.check_connection()
        except _SESSION_ERRORS as e:
            raise BridgeConnectionError(
                f"OPC UA session to {self._endpoint} lost: {e}",
                endpoint=self._endpoint,
                cause=e,
            ) from e

        values: dict[str, TagValue] = {}
        errors: dict[str, TagReadError] = {}
        for tag, node_id in self._nodes.items():
            try:
                values[tag] = await self._read_one(client, tag, node_id)
            except TagReadError as e:
                logger.warning("Tag %s unreadable: %s", tag, e)
                values[tag] = TagValue.absent()
                errors[tag] = e
        return Snapshot(values=values, errors=errors)

    async def disconnect(self) -> ShutdownError | None:
        client, self._client = self._client, None
        if client is None:
            return None
        try:
            await client.disconnect()
        except Exception as e:
            return ShutdownError(self._endpoint, f"Error closing OPC UA session: {e}", cause=e)
        logger.info("Disconnected from OPC UA server %s", self._endpoint)
        return None
