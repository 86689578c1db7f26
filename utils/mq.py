"""
MQTT publisher wrapper with connection lifecycle management and error handling.

paho-mqtt runs its network loop in a background thread; every callback result
is handed back to the asyncio event loop with call_soon_threadsafe so callers
only ever await coroutines.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import orjson
import paho.mqtt.client as mqtt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PUBLISH_POLL_SECONDS = 0.02


class MQTTConnectionError(ConnectionError):
    """Broker handshake failed or the connection is unusable."""


class PublisherNotConnectedError(MQTTConnectionError):
    """publish() was called while no broker connection is established."""


class PublishError(RuntimeError):
    """The broker did not accept or acknowledge a message."""


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)


class MQTTPublisher:
    """MQTT publisher for telemetry messages with connect retries and auto-reconnect."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        """Initialize MQTT publisher.

        Args:
            config: Settings to use, defaults to the global settings
            client_factory: Callable building a paho client from a client id
        """
        self.config = config or default_settings
        self._client_factory = client_factory or _default_client_factory
        self.client: Optional[Any] = None
        self.is_connected = False
        self.reconnect_attempts = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connect_future: Optional[asyncio.Future] = None

    def _build_client(self) -> Any:
        client = self._client_factory(self.config.MQTT_CLIENT_ID)
        if self.config.MQTT_USERNAME:
            client.username_pw_set(self.config.MQTT_USERNAME, self.config.MQTT_PASSWORD or None)
        if self.config.broker_uses_tls:
            client.tls_set()
        client.reconnect_delay_set(
            min_delay=self.config.MQTT_RECONNECT_PERIOD_SECONDS,
            max_delay=max(self.config.MQTT_RECONNECT_PERIOD_SECONDS, 30),
        )
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        return client

    # -- paho callbacks (network thread) --------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("MQTT broker refused connection", extra={"reason": str(reason_code)})
            self._resolve_connect(MQTTConnectionError(f"Broker refused connection: {reason_code}"))
            return

        self.is_connected = True
        self.reconnect_attempts = 0
        logger.info(
            "Connected to MQTT broker",
            extra={"host": self.config.broker_host, "port": self.config.MQTT_BROKER_PORT},
        )
        self._resolve_connect(None)

    def _on_connect_fail(self, client, userdata):
        self._register_reconnect_attempt()
        self._resolve_connect(MQTTConnectionError("Could not reach MQTT broker"))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        was_connected = self.is_connected
        self.is_connected = False
        if was_connected:
            logger.warning("MQTT connection closed", extra={"reason": str(reason_code)})

    def _register_reconnect_attempt(self) -> None:
        self.reconnect_attempts += 1
        logger.warning(
            "MQTT reconnect attempt",
            extra={
                "attempt": self.reconnect_attempts,
                "max_attempts": self.config.MQTT_MAX_RECONNECT_ATTEMPTS,
            },
        )
        if self.reconnect_attempts >= self.config.MQTT_MAX_RECONNECT_ATTEMPTS:
            logger.error("Maximum MQTT reconnect attempts exceeded, giving up")
            if self._loop is not None and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self.disconnect)

    def _resolve_connect(self, error: Optional[Exception]) -> None:
        future = self._connect_future
        loop = self._loop
        if future is None or loop is None or loop.is_closed():
            return

        def _settle() -> None:
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)

        loop.call_soon_threadsafe(_settle)

    # -- public API -----------------------------------------------------
    @retry(
        retry=retry_if_exception_type((MQTTConnectionError, asyncio.TimeoutError, OSError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def connect(self) -> None:
        """Connect to the broker and wait for the CONNACK.

        Raises:
            MQTTConnectionError: If the broker refuses or cannot be reached
            asyncio.TimeoutError: If no CONNACK arrives in time
        """
        if self.is_connected and self.client is not None:
            return

        self._teardown_client()
        self._loop = asyncio.get_running_loop()
        self._connect_future = self._loop.create_future()
        self.client = self._build_client()

        logger.info(
            "Connecting to MQTT broker",
            extra={"host": self.config.broker_host, "port": self.config.MQTT_BROKER_PORT},
        )
        self.client.connect_async(
            self.config.broker_host,
            self.config.MQTT_BROKER_PORT,
            keepalive=self.config.MQTT_KEEPALIVE,
        )
        self.client.loop_start()

        try:
            await asyncio.wait_for(self._connect_future, timeout=self.config.MQTT_CONNECT_TIMEOUT_SECONDS)
        except BaseException:
            self._teardown_client()
            raise
        finally:
            self._connect_future = None

    async def publish(
        self,
        message: dict[str, Any],
        topic: Optional[str] = None,
        qos: Optional[int] = None,
        retain: Optional[bool] = None,
    ) -> bool:
        """Publish a JSON message and wait until the broker acknowledges it.

        Args:
            message: Message payload dict (will be JSON-serialized)
            topic: Target topic, defaults to settings.MQTT_TOPIC
            qos: QoS level, defaults to settings.MQTT_QOS
            retain: Retain flag, defaults to settings.MQTT_RETAIN

        Returns:
            True once the message has been delivered

        Raises:
            PublisherNotConnectedError: If no broker connection is established
            PublishError: If the broker rejects or does not acknowledge the message
        """
        if not self.is_connected or self.client is None:
            raise PublisherNotConnectedError("MQTT client is not connected")

        topic = topic or self.config.MQTT_TOPIC
        qos = self.config.MQTT_QOS if qos is None else qos
        retain = self.config.MQTT_RETAIN if retain is None else retain

        message_bytes = orjson.dumps(message)
        info = self.client.publish(topic, message_bytes, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")

        timeout = self.config.MQTT_PUBLISH_TIMEOUT_SECONDS
        if not await self._wait_for_ack(info, timeout):
            raise PublishError(f"Publish to {topic} not acknowledged within {timeout}s")

        logger.debug("Published message", extra={"topic": topic, "bytes": len(message_bytes)})
        return True

    async def _wait_for_ack(self, info: mqtt.MQTTMessageInfo, timeout: float) -> bool:
        # Polls on the event loop; no worker thread waits on the ack.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                if info.is_published():
                    return True
            except (RuntimeError, ValueError) as e:
                raise PublishError(f"Publish failed: {e}") from e
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(PUBLISH_POLL_SECONDS)

    def _teardown_client(self) -> None:
        client = self.client
        self.client = None
        self.is_connected = False
        if client is None:
            return
        client.on_connect = None
        client.on_connect_fail = None
        client.on_disconnect = None
        client.disconnect()
        client.loop_stop()

    def disconnect(self) -> None:
        """Disconnect from the broker and release the client. Safe to call twice."""
        if self.client is None:
            return
        self._teardown_client()
        logger.info("MQTT connection released")
