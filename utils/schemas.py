"""
Pydantic Schemas - Data Validation Models

Defines the records that flow through the sensor:
- Reading: one ground-truth refresh result
- PublishPayload: the message sent to the MQTT broker on every publish tick

Both models are immutable and serialize with camelCase keys so the wire
format stays stable for downstream subscribers.

Usage:
    from utils.schemas import PublishPayload

    payload = PublishPayload(temperature=18.7, base_temperature=18.5, ...)
    message = payload.model_dump(mode="json", by_alias=True)
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_serializer
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


class Reading(_WireModel):
    """Ground-truth temperature reading produced once per refresh cycle.

    is_default is True whenever the temperature is the configured fallback.
    error is set only when the source could not be fetched at all, which
    separates "source down" from "source reachable but unparsable".
    A reading without an error serializes with no error key at all.
    """

    temperature: float = Field(..., description="Temperature in the source unit")
    timestamp: datetime = Field(default_factory=utc_now, description="When the reading was taken")
    city: str = Field(..., description="City the reading belongs to")
    source: str = Field(..., description="Data source identifier")
    is_default: bool = Field(default=False, description="Configured default was used")
    error: Optional[str] = Field(default=None, description="Transport failure message")

    @model_serializer(mode="wrap")
    def omit_missing_error(self, handler):
        data = handler(self)
        if self.error is None:
            data.pop("error", None)
        return data


class PublishPayload(_WireModel):
    """Synthetic telemetry message derived from the latest snapshot."""

    temperature: float = Field(..., description="base_temperature + variation, 1 decimal")
    base_temperature: float = Field(..., description="Last ground-truth temperature")
    variation: float = Field(..., description="Signed jitter applied to the base value")
    timestamp: datetime = Field(default_factory=utc_now, description="Publish time")
    city: str = Field(..., description="City the value belongs to")
    source: str = Field(..., description="Data source identifier")
    last_real_update: Optional[datetime] = Field(
        default=None, description="Timestamp of the last completed refresh"
    )
