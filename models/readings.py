"""Canonical reading schema shared by every provider connector."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Provider(str, Enum):
    """Source connector that produced a reading."""

    sensor_community = "sensor.community"
    netatmo = "netatmo"


class GeoLocation(BaseModel):
    """Point in decimal degrees with altitude in meters."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    altitude: float = 0.0


class CanonicalReading(BaseModel):
    """A single normalized measurement, immutable once created.

    Temperature is in Celsius, humidity in relative percent and pressure in
    millibar regardless of what the provider reports natively.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime
    location: GeoLocation
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    provider: Provider
    provider_sensor_id: Optional[str] = None
    sensor_type_name: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def has_measurement(self) -> bool:
        return any(
            value is not None for value in (self.temperature, self.humidity, self.pressure)
        )
