"""Tests for OpcUaTagSource with a mocked asyncua client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from uns_bridge.errors import BridgeConnectionError, ShutdownError, TagReadError
from uns_bridge.source import OpcUaTagSource, node_ids_from_list, node_ids_from_template, tag_from_node_id
from uns_bridge.types import TagValue

NODES = node_ids_from_template(["MachineName", "GoodBottles", "ActiveAlarms"])


def make_client(values: dict[str, object], failing: dict[str, Exception] | None = None) -> MagicMock:
    """Mock asyncua Client whose get_node(node_id).read_value() serves values."""
    failing = failing or {}
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.check_connection = AsyncMock()
    client.set_security_string = AsyncMock()

    def get_node(node_id: str) -> MagicMock:
        node = MagicMock()
        if node_id in failing:
            node.read_value = AsyncMock(side_effect=failing[node_id])
        else:
            node.read_value = AsyncMock(return_value=values.get(node_id))
        return node

    client.get_node.side_effect = get_node
    return client


def test_node_ids_from_template() -> None:
    assert NODES["GoodBottles"] == "ns=2;s=BeverageFillingLine.GoodBottles"
    with pytest.raises(ValueError):
        node_ids_from_template(["GoodBottles"], "ns=2;s=Line.GoodBottles")


@pytest.mark.parametrize(
    "node_id,expected",
    [
        ("ns=2;s=BeverageFillingLine.GoodBottles", "GoodBottles"),
        ("ns=3;s=Plant.Line1.Filler.MachineStatus", "MachineStatus"),
        ("ns=2;s=Speed", "Speed"),
    ],
)
def test_tag_from_node_id(node_id: str, expected: str) -> None:
    assert tag_from_node_id(node_id) == expected


def test_empty_node_set_rejected() -> None:
    with pytest.raises(ValueError):
        OpcUaTagSource({})


def test_insecure_connect_refused_by_default() -> None:
    source = OpcUaTagSource(NODES)
    with patch("uns_bridge.source.Client") as client_cls:
        with pytest.raises(BridgeConnectionError, match="Refusing unauthenticated"):
            asyncio.run(source.connect())
    client_cls.assert_not_called()


def test_accept_untrusted_connects_and_audits(caplog: pytest.LogCaptureFixture) -> None:
    client = make_client({})
    source = OpcUaTagSource(NODES, endpoint="opc.tcp://filler:4840", accept_untrusted=True)
    with patch("uns_bridge.source.Client", return_value=client) as client_cls:
        with caplog.at_level("WARNING", logger="uns_bridge.source"):
            asyncio.run(source.connect())
    client_cls.assert_called_once_with(url="opc.tcp://filler:4840", timeout=4.0)
    client.connect.assert_awaited_once()
    client.set_security_string.assert_not_called()
    assert client.name == "OpcMqttBridge"
    assert client.application_uri.startswith("urn:")
    assert client.application_uri.endswith(":OpcMqttBridge")
    assert "AUDIT" in caplog.text


def test_security_string_is_applied() -> None:
    client = make_client({})
    security = "Basic256Sha256,SignAndEncrypt,cert.der,key.pem"
    source = OpcUaTagSource(NODES, security=security)
    with patch("uns_bridge.source.Client", return_value=client):
        asyncio.run(source.connect())
    client.set_security_string.assert_awaited_once_with(security)
    client.connect.assert_awaited_once()


def test_connect_failure_wraps_error() -> None:
    client = make_client({})
    client.connect.side_effect = ConnectionRefusedError("refused")
    source = OpcUaTagSource(NODES, accept_untrusted=True)
    with patch("uns_bridge.source.Client", return_value=client):
        with pytest.raises(BridgeConnectionError) as exc_info:
            asyncio.run(source.connect())
    assert isinstance(exc_info.value.cause, ConnectionRefusedError)


def test_read_all_converts_values() -> None:
    client = make_client(
        {
            NODES["MachineName"]: "Filler 3",
            NODES["GoodBottles"]: 1200,
            NODES["ActiveAlarms"]: ["LowCO2", "CapJam"],
        }
    )
    source = OpcUaTagSource(NODES, accept_untrusted=True)

    async def scenario():
        await source.connect()
        return await source.read_all()

    with patch("uns_bridge.source.Client", return_value=client):
        snapshot = asyncio.run(scenario())
    assert snapshot.get("MachineName") == TagValue.text("Filler 3")
    assert snapshot.get("GoodBottles") == TagValue.integer(1200)
    assert snapshot.get("ActiveAlarms") == TagValue.text_array(["LowCO2", "CapJam"])
    assert snapshot.errors == {}


def test_one_unreadable_node_is_absent() -> None:
    client = make_client(
        {NODES["MachineName"]: "Filler 3", NODES["ActiveAlarms"]: []},
        failing={NODES["GoodBottles"]: RuntimeError("BadNodeIdUnknown")},
    )
    source = OpcUaTagSource(NODES, accept_untrusted=True)

    async def scenario():
        await source.connect()
        return await source.read_all()

    with patch("uns_bridge.source.Client", return_value=client):
        snapshot = asyncio.run(scenario())
    assert len(snapshot) == 3
    assert snapshot.get("GoodBottles").is_absent
    assert snapshot.get("MachineName") == TagValue.text("Filler 3")
    error = snapshot.errors["GoodBottles"]
    assert isinstance(error, TagReadError)
    assert error.node == NODES["GoodBottles"]


def test_read_without_session_raises() -> None:
    with pytest.raises(BridgeConnectionError, match="not connected"):
        asyncio.run(OpcUaTagSource(NODES).read_all())


def test_lost_session_raises_connection_error() -> None:
    client = make_client({})
    client.check_connection.side_effect = ConnectionResetError("reset by peer")
    source = OpcUaTagSource(NODES, accept_untrusted=True)

    async def scenario():
        await source.connect()
        return await source.read_all()

    with patch("uns_bridge.source.Client", return_value=client):
        with pytest.raises(BridgeConnectionError, match="lost"):
            asyncio.run(scenario())


def test_disconnect_is_idempotent() -> None:
    client = make_client({})
    source = OpcUaTagSource(NODES, accept_untrusted=True)

    async def scenario():
        await source.connect()
        return await source.disconnect(), await source.disconnect()

    with patch("uns_bridge.source.Client", return_value=client):
        first, second = asyncio.run(scenario())
    assert first is None and second is None
    client.disconnect.assert_awaited_once()


def test_disconnect_failure_is_returned() -> None:
    client = make_client({})
    client.disconnect.side_effect = OSError("broken pipe")
    source = OpcUaTagSource(NODES, accept_untrusted=True)

    async def scenario():
        await source.connect()
        return await source.disconnect()

    with patch("uns_bridge.source.Client", return_value=client):
        error = asyncio.run(scenario())
    assert isinstance(error, ShutdownError)
    assert error.endpoint == "opc.tcp://localhost:4840"


def test_node_ids_from_list() -> None:
    nodes = node_ids_from_list(["ns=2;s=BeverageFillingLine.GoodBottles", "ns=3;s=Filler.Speed"])
    assert nodes == {"GoodBottles": "ns=2;s=BeverageFillingLine.GoodBottles", "Speed": "ns=3;s=Filler.Speed"}
    with pytest.raises(ValueError, match="both map to tag"):
        node_ids_from_list(["ns=2;s=LineA.Speed", "ns=2;s=LineB.Speed"])
