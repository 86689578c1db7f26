"""
Telemetry Publisher for the Weather Sensor

Builds the synthetic telemetry message from the current snapshot and hands
it to the MQTT gateway.

Features:
- Jittered temperature around the last ground-truth value
- JSON message with camelCase keys
- Structured logging

Usage:
    from apps.weather_sensor.publisher import publish_telemetry

    await publish_telemetry(gateway, state.snapshot)
"""

import logging
import random
from typing import Any, Optional, Protocol

from apps.weather_sensor.state import TelemetrySnapshot, draw_variation
from utils.config import Settings, settings as default_settings
from utils.schemas import PublishPayload, utc_now

logger = logging.getLogger(__name__)


class TelemetryGateway(Protocol):
    async def publish(
        self,
        message: dict[str, Any],
        topic: Optional[str] = None,
        qos: Optional[int] = None,
        retain: Optional[bool] = None,
    ) -> bool:
        ...


def build_payload(
    snapshot: TelemetrySnapshot,
    config: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
) -> PublishPayload:
    """Apply a random variation to the snapshot's base temperature."""
    config = config or default_settings
    variation = draw_variation(config.VARIATION_MIN, config.VARIATION_MAX, rng)
    return PublishPayload(
        temperature=round(snapshot.base_temperature + variation, 1),
        base_temperature=snapshot.base_temperature,
        variation=variation,
        timestamp=utc_now(),
        city=config.WEATHER_CITY,
        source=config.WEATHER_SOURCE,
        last_real_update=snapshot.last_update,
    )


async def publish_telemetry(
    gateway: TelemetryGateway,
    snapshot: TelemetrySnapshot,
    config: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
) -> PublishPayload:
    """
    Publish one telemetry message for the given snapshot.

    Args:
        gateway: Connected MQTT gateway
        snapshot: Snapshot to derive the message from

    Returns:
        The payload that was published

    Raises:
        utils.mq.MQTTConnectionError: If the gateway is not connected
        utils.mq.PublishError: If the broker does not accept the message
    """
    config = config or default_settings
    payload = build_payload(snapshot, config, rng)
    message = payload.model_dump(mode="json", by_alias=True)

    try:
        await gateway.publish(
            message,
            topic=config.MQTT_TOPIC,
            qos=config.MQTT_QOS,
            retain=config.MQTT_RETAIN,
        )
    except Exception as e:
        logger.error(
            "Failed to publish telemetry",
            extra={"topic": config.MQTT_TOPIC, "error": str(e)},
        )
        raise

    logger.info(
        "Published telemetry",
        extra={
            "topic": config.MQTT_TOPIC,
            "temperature": payload.temperature,
            "base_temperature": payload.base_temperature,
        },
    )
    return payload
