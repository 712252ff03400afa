"""MessageSink contract and the MQTT implementation (aiomqtt)."""

import asyncio
import logging
from typing import Protocol

import aiomqtt
import paho.mqtt.client as mqtt

from .errors import BridgeConnectionError, PublishError, ShutdownError

logger = logging.getLogger(__name__)

DEFAULT_BROKER = "localhost"
DEFAULT_PORT = 1883
DEFAULT_CLIENT_ID = "beverage-filling-line-bridge"


class MessageSink(Protocol):
    """Publish-subscribe bus accepting topic-addressed payloads."""

    @property
    def name(self) -> str: ...

    async def connect(self) -> None:
        """Network handshake; raise BridgeConnectionError on failure."""
        ...

    async def publish(self, topic: str, payload: str) -> None:
        """Deliver one payload; waits for the transport ack. Raises PublishError."""
        ...

    async def disconnect(self) -> ShutdownError | None:
        """Release the connection. Idempotent; returns the failure instead of raising it."""
        ...


class MqttMessageSink:
    """
    MQTT publisher. publish() waits for the broker acknowledgement (QoS 1 by default),
    so nothing is left outstanding once the awaiting cycle has returned.
    """

    def __init__(
        self,
        broker: str = DEFAULT_BROKER,
        port: int = DEFAULT_PORT,
        client_id: str = DEFAULT_CLIENT_ID,
        qos: int = 1,
        publish_timeout: float = 5.0,
        keepalive: int = 60,
    ) -> None:
        if qos not in (0, 1, 2):
            raise ValueError(f"qos must be 0, 1 or 2, got {qos}")
        self._broker = broker
        self._port = port
        self._client_id = client_id
        self._qos = qos
        self._publish_timeout = publish_timeout
        self._keepalive = keepalive
        self._client: aiomqtt.Client | None = None

    @property
    def name(self) -> str:
        return f"mqtt://{self._broker}:{self._port}"

    async def connect(self) -> None:
        if self._client is not None:
            return
        client = aiomqtt.Client(
            self._broker,
            port=self._port,
            identifier=self._client_id,
            keepalive=self._keepalive,
        )
        try:
            await client.__aenter__()
        except (aiomqtt.MqttError, OSError) as e:
            raise BridgeConnectionError(
                f"MQTT connection to {self.name} failed: {e}", endpoint=self.name, cause=e
            ) from e
        self._client = client
        logger.info("Connected to MQTT broker %s as %s", self.name, self._client_id)

    async def publish(self, topic: str, payload: str) -> None:
        client = self._client
        if client is None:
            raise BridgeConnectionError("MQTT sink is not connected", endpoint=self.name)
        try:
            await client.publish(topic, payload=payload, qos=self._qos, timeout=self._publish_timeout)
        except aiomqtt.MqttCodeError as e:
            if e.rc == mqtt.MQTT_ERR_NO_CONN:
                raise BridgeConnectionError(
                    f"MQTT connection to {self.name} lost", endpoint=self.name, cause=e
                ) from e
            raise PublishError(topic, f"Publish to {topic} failed: {e}", cause=e) from e
        except (aiomqtt.MqttError, asyncio.TimeoutError) as e:
            raise PublishError(topic, f"Publish to {topic} failed: {e}", cause=e) from e

    async def disconnect(self) -> ShutdownError | None:
        client, self._client = self._client, None
        if client is None:
            return None
        try:
            await client.__aexit__(None, None, None)
        except (aiomqtt.MqttError, OSError) as e:
            return ShutdownError(self.name, f"Error disconnecting from MQTT broker: {e}", cause=e)
        logger.info("Disconnected from MQTT broker %s", self.name)
        return None
