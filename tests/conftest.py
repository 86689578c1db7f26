from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from utils.config import Settings
from utils.mq import PublishError
from utils.schemas import Reading


def build_settings(**overrides: Any) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    return build_settings


@pytest.fixture()
def settings() -> Settings:
    return build_settings()


class FakeGateway:
    """In-memory stand-in for MQTTPublisher."""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.fail_with = fail_with
        self.messages: list[dict[str, Any]] = []
        self.calls: list[dict[str, Any]] = []
        self.disconnect_calls = 0

    async def publish(self, message, topic=None, qos=None, retain=None) -> bool:
        self.calls.append({"topic": topic, "qos": qos, "retain": retain})
        if self.fail_with is not None:
            raise self.fail_with
        self.messages.append(message)
        return True

    def disconnect(self) -> None:
        self.disconnect_calls += 1


class FakeReadingSource:
    def __init__(self, readings: list[Reading]) -> None:
        self.readings = list(readings)
        self.calls = 0

    async def fetch_current(self) -> Reading:
        self.calls += 1
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def failing_gateway() -> FakeGateway:
    return FakeGateway(fail_with=PublishError("broker unavailable"))
