"""Sensor.Community snapshot connector.

The public ``data.json`` feed carries every sensor's readings averaged over the
last five minutes. Only outdoor sensors inside the configured country and
bounding box that report temperature, humidity or pressure are kept.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any, Iterable, Optional

import httpx
from pydantic import BaseModel, BeforeValidator, Field, TypeAdapter

from connectors.base import BoundingBox, ProviderConnector, ReadingSink
from connectors.decoders import (
    ZERO_TIMESTAMP,
    decode_number,
    decode_optional_number,
    decode_timestamp,
)
from models.readings import CanonicalReading, GeoLocation, Provider

logger = logging.getLogger(__name__)

SUPPORTED_VALUE_TYPES = frozenset({"temperature", "humidity", "pressure"})

OptionalNumber = Annotated[Optional[float], BeforeValidator(decode_optional_number)]
Timestamp = Annotated[datetime, BeforeValidator(decode_timestamp)]
Flag = Annotated[bool, BeforeValidator(lambda raw: decode_number(raw) != 0)]


class SCLocation(BaseModel):
    latitude: OptionalNumber = None
    longitude: OptionalNumber = None
    altitude: OptionalNumber = None
    country: Optional[str] = None
    indoor: Flag = False


class SCSensorType(BaseModel):
    name: Optional[str] = None
    manufacturer: Optional[str] = None


class SCSensor(BaseModel):
    id: Optional[int] = None
    sensor_type: Optional[SCSensorType] = None


class SCDataValue(BaseModel):
    value: Any = None
    value_type: Optional[str] = None


class SCRecord(BaseModel):
    """One raw entry of the snapshot feed."""

    id: Optional[int] = None
    timestamp: Timestamp = ZERO_TIMESTAMP
    location: Optional[SCLocation] = None
    sensor: Optional[SCSensor] = None
    sensordatavalues: list[SCDataValue] = Field(default_factory=list)

    def first_value(self, value_type: str) -> Optional[float]:
        for item in self.sensordatavalues:
            if item.value_type == value_type:
                return decode_optional_number(item.value)
        return None


_RECORDS = TypeAdapter(list[SCRecord])


def decode_records(payload: Any) -> list[SCRecord]:
    """Validate the raw JSON array; raises ``pydantic.ValidationError`` on shape errors."""
    return _RECORDS.validate_python(payload)


def location_filter(record: SCRecord, country: str, bbox: BoundingBox) -> bool:
    location = record.location
    if location is None or location.country != country or location.indoor:
        return False
    if location.latitude is None or location.longitude is None:
        return False
    return bbox.contains(location.latitude, location.longitude)


def sensor_filter(record: SCRecord, excluded_types: Iterable[str] = ("DHT22",)) -> bool:
    sensor = record.sensor
    if sensor is None or sensor.sensor_type is None or not sensor.sensor_type.name:
        return False
    if sensor.sensor_type.name in set(excluded_types):
        return False
    return any(item.value_type in SUPPORTED_VALUE_TYPES for item in record.sensordatavalues)


def to_canonical(record: SCRecord) -> CanonicalReading:
    location = record.location or SCLocation()
    sensor = record.sensor or SCSensor()
    pressure = record.first_value("pressure")
    return CanonicalReading(
        timestamp=record.timestamp,
        location=GeoLocation(
            latitude=location.latitude or 0.0,
            longitude=location.longitude or 0.0,
            altitude=location.altitude or 0.0,
        ),
        temperature=record.first_value("temperature"),
        humidity=record.first_value("humidity"),
        # Reported in Pascal.
        pressure=pressure / 100 if pressure is not None else None,
        provider=Provider.sensor_community,
        provider_sensor_id=str(sensor.id) if sensor.id is not None else None,
        sensor_type_name=sensor.sensor_type.name if sensor.sensor_type else None,
    )


def normalize(
    records: Iterable[SCRecord],
    country: str,
    bbox: BoundingBox,
    excluded_types: Iterable[str] = ("DHT22",),
) -> list[CanonicalReading]:
    """Filter raw records and map the survivors into canonical readings."""
    excluded = frozenset(excluded_types)
    readings: list[CanonicalReading] = []
    for record in records:
        if not (location_filter(record, country, bbox) and sensor_filter(record, excluded)):
            continue
        if record.timestamp == ZERO_TIMESTAMP:
            logger.warning(
                "Skipping record with undecodable timestamp.",
                extra={
                    "provider": Provider.sensor_community.value,
                    "reason": "invalid timestamp",
                },
            )
            continue
        readings.append(to_canonical(record))
    return readings


class SensorCommunityConnector(ProviderConnector):
    """Polls the unauthenticated Sensor.Community snapshot endpoint."""

    provider = Provider.sensor_community

    def __init__(
        self,
        client: httpx.AsyncClient,
        sink: ReadingSink,
        url: str,
        country: str,
        bbox: BoundingBox,
        excluded_types: Iterable[str] = ("DHT22",),
    ) -> None:
        super().__init__(client, sink)
        self.url = url
        self.country = country
        self.bbox = bbox
        self.excluded_types = tuple(excluded_types)

    async def fetch_readings(self) -> list[CanonicalReading]:
        response = self._handle_response(await self.client.get(self.url))
        records = decode_records(self._json(response))
        readings = normalize(records, self.country, self.bbox, self.excluded_types)
        logger.debug(
            "Filtered snapshot feed.",
            extra={
                "provider": self.provider.value,
                "row_count": len(records),
                "reading_count": len(readings),
            },
        )
        return readings
