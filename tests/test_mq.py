from __future__ import annotations

import asyncio
from typing import Any, Optional

import orjson
import paho.mqtt.client as mqtt
import pytest
from tenacity import stop_after_attempt, wait_none

from utils.mq import MQTTConnectionError, MQTTPublisher, PublishError, PublisherNotConnectedError


class FakeReasonCode:
    def __init__(self, failure: bool = False) -> None:
        self.is_failure = failure

    def __str__(self) -> str:
        return "Not authorized" if self.is_failure else "Success"


class FakeMessageInfo:
    def __init__(self, rc: int = mqtt.MQTT_ERR_SUCCESS, published: bool = True) -> None:
        self.rc = rc
        self._published = published
        self.polls = 0

    def is_published(self) -> bool:
        self.polls += 1
        return self._published


class FakeClient:
    """Mimics the parts of paho.mqtt.client.Client the publisher uses."""

    def __init__(
        self,
        client_id: str,
        refuse: bool = False,
        silent: bool = False,
        info: Optional[FakeMessageInfo] = None,
    ) -> None:
        self.client_id = client_id
        self.refuse = refuse
        self.silent = silent
        self.info = info or FakeMessageInfo()
        self.credentials: Optional[tuple[str, Optional[str]]] = None
        self.connected_to: Optional[tuple[str, int, int]] = None
        self.published: list[dict[str, Any]] = []
        self.loop_started = 0
        self.loop_stopped = 0
        self.disconnected = 0
        self.on_connect = None
        self.on_connect_fail = None
        self.on_disconnect = None

    def username_pw_set(self, username: str, password: Optional[str] = None) -> None:
        self.credentials = (username, password)

    def tls_set(self) -> None:
        pass

    def reconnect_delay_set(self, min_delay: int = 1, max_delay: int = 120) -> None:
        pass

    def connect_async(self, host: str, port: int, keepalive: int = 60) -> None:
        self.connected_to = (host, port, keepalive)

    def loop_start(self) -> None:
        self.loop_started += 1
        if self.silent:
            return
        self.on_connect(self, None, {}, FakeReasonCode(failure=self.refuse), None)

    def loop_stop(self) -> None:
        self.loop_stopped += 1

    def disconnect(self) -> None:
        self.disconnected += 1

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> FakeMessageInfo:
        self.published.append({"topic": topic, "payload": payload, "qos": qos, "retain": retain})
        return self.info


class ClientFactory:
    def __init__(self, **client_kwargs: Any) -> None:
        self.client_kwargs = client_kwargs
        self.clients: list[FakeClient] = []

    def __call__(self, client_id: str) -> FakeClient:
        client = FakeClient(client_id, **self.client_kwargs)
        self.clients.append(client)
        return client


def test_connect_and_publish(make_settings) -> None:
    config = make_settings(MQTT_BROKER_URL="mqtt://broker.example.org", MQTT_CLIENT_ID="sensor-1")
    factory = ClientFactory()
    publisher = MQTTPublisher(config, client_factory=factory)

    async def scenario() -> bool:
        await publisher.connect()
        return await publisher.publish({"temperature": 18.5})

    assert asyncio.run(scenario()) is True

    client = factory.clients[0]
    assert client.client_id == "sensor-1"
    assert client.connected_to == ("broker.example.org", 1883, 60)
    assert publisher.is_connected is True
    assert client.published == [
        {
            "topic": "kiot/zenit/notebook/temp-sensor",
            "payload": orjson.dumps({"temperature": 18.5}),
            "qos": 1,
            "retain": False,
        }
    ]
    assert client.info.polls == 1


def test_publish_overrides_topic_and_flags(settings) -> None:
    factory = ClientFactory()
    publisher = MQTTPublisher(settings, client_factory=factory)

    async def scenario() -> None:
        await publisher.connect()
        await publisher.publish({"a": 1}, topic="other/topic", qos=0, retain=True)

    asyncio.run(scenario())

    published = factory.clients[0].published[0]
    assert (published["topic"], published["qos"], published["retain"]) == ("other/topic", 0, True)


def test_credentials_are_applied(make_settings) -> None:
    config = make_settings(MQTT_USERNAME="user", MQTT_PASSWORD="secret")
    factory = ClientFactory()
    publisher = MQTTPublisher(config, client_factory=factory)

    asyncio.run(publisher.connect())

    assert factory.clients[0].credentials == ("user", "secret")


def test_publish_without_connection_is_rejected(settings) -> None:
    publisher = MQTTPublisher(settings, client_factory=ClientFactory())

    with pytest.raises(PublisherNotConnectedError):
        asyncio.run(publisher.publish({"temperature": 1.0}))


def test_publish_after_broker_disconnect_is_rejected(settings) -> None:
    factory = ClientFactory()
    publisher = MQTTPublisher(settings, client_factory=factory)

    async def scenario() -> None:
        await publisher.connect()
        client = factory.clients[0]
        client.on_disconnect(client, None, {}, FakeReasonCode(failure=True), None)
        await publisher.publish({"temperature": 1.0})

    with pytest.raises(PublisherNotConnectedError):
        asyncio.run(scenario())


def test_rejected_publish_raises(settings) -> None:
    factory = ClientFactory(info=FakeMessageInfo(rc=mqtt.MQTT_ERR_NO_CONN))
    publisher = MQTTPublisher(settings, client_factory=factory)

    async def scenario() -> None:
        await publisher.connect()
        await publisher.publish({"temperature": 1.0})

    with pytest.raises(PublishError):
        asyncio.run(scenario())


def test_unacknowledged_publish_raises_after_timeout(make_settings) -> None:
    config = make_settings(MQTT_PUBLISH_TIMEOUT_SECONDS=0.1)
    info = FakeMessageInfo(published=False)
    publisher = MQTTPublisher(config, client_factory=ClientFactory(info=info))

    async def scenario() -> float:
        await publisher.connect()
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(PublishError):
            await publisher.publish({"temperature": 1.0})
        return loop.time() - started

    elapsed = asyncio.run(scenario())

    assert 0.1 <= elapsed < 1.0
    assert info.polls > 1


def test_publish_rejected_after_queueing_raises(settings) -> None:
    class RejectedInfo(FakeMessageInfo):
        def is_published(self) -> bool:
            raise RuntimeError("Message publish failed: The client is not currently connected.")

    publisher = MQTTPublisher(settings, client_factory=ClientFactory(info=RejectedInfo()))

    async def scenario() -> None:
        await publisher.connect()
        await publisher.publish({"temperature": 1.0})

    with pytest.raises(PublishError):
        asyncio.run(scenario())


def test_refused_connection_raises(settings) -> None:
    factory = ClientFactory(refuse=True)
    publisher = MQTTPublisher(settings, client_factory=factory)
    connect_once = MQTTPublisher.connect.retry_with(stop=stop_after_attempt(1), wait=wait_none())

    with pytest.raises(MQTTConnectionError):
        asyncio.run(connect_once(publisher))

    assert publisher.is_connected is False
    assert publisher.client is None
    assert factory.clients[0].loop_stopped == 1


def test_disconnect_is_idempotent(settings) -> None:
    factory = ClientFactory()
    publisher = MQTTPublisher(settings, client_factory=factory)

    asyncio.run(publisher.connect())
    publisher.disconnect()
    publisher.disconnect()

    client = factory.clients[0]
    assert client.disconnected == 1
    assert client.loop_stopped == 1
    assert client.on_connect is None
    assert client.on_disconnect is None
    assert publisher.is_connected is False


def test_gives_up_after_max_reconnect_attempts(make_settings) -> None:
    config = make_settings(MQTT_MAX_RECONNECT_ATTEMPTS=2)
    factory = ClientFactory()
    publisher = MQTTPublisher(config, client_factory=factory)

    async def scenario() -> None:
        await publisher.connect()
        client = factory.clients[0]
        client.on_disconnect(client, None, {}, FakeReasonCode(failure=True), None)
        client.on_connect_fail(client, None)
        assert publisher.client is not None
        client.on_connect_fail(client, None)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert publisher.reconnect_attempts == 2
    assert publisher.client is None


def test_connect_times_out_without_connack(make_settings) -> None:
    config = make_settings(MQTT_CONNECT_TIMEOUT_SECONDS=0.05)
    factory = ClientFactory(silent=True)
    publisher = MQTTPublisher(config, client_factory=factory)
    connect_once = MQTTPublisher.connect.retry_with(stop=stop_after_attempt(1), wait=wait_none())

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(connect_once(publisher))

    assert publisher.is_connected is False
    assert publisher.client is None
    assert factory.clients[0].loop_stopped == 1
    assert factory.clients[0].disconnected == 1


class RefuseOnceFactory(ClientFactory):
    def __call__(self, client_id: str) -> FakeClient:
        client = FakeClient(client_id, refuse=not self.clients)
        self.clients.append(client)
        return client


def test_connect_retries_refused_handshake(settings) -> None:
    factory = RefuseOnceFactory()
    publisher = MQTTPublisher(settings, client_factory=factory)
    connect = MQTTPublisher.connect.retry_with(wait=wait_none())

    asyncio.run(connect(publisher))

    assert len(factory.clients) == 2
    assert factory.clients[0].loop_stopped == 1
    assert publisher.client is factory.clients[1]
    assert publisher.is_connected is True
