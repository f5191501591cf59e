"""Netatmo public weather station connector.

``getpublicdata`` returns every station inside a bounding box. Each station
carries a map of measurement blocks keyed by module address; a block lists
the physical quantities it records in ``type`` and, under ``res``, one list
of values per device positionally aligned with that ``type`` array.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Optional

import httpx
from pydantic import BaseModel, BeforeValidator, Field, ValidationError

from connectors.base import (
    AuthorizationError,
    BoundingBox,
    ProviderConnector,
    ProviderError,
    ReadingSink,
)
from connectors.credentials import CredentialStore
from connectors.decoders import (
    ZERO_TIMESTAMP,
    decode_number,
    decode_optional_number,
    decode_timestamp,
)
from models.readings import CanonicalReading, GeoLocation, Provider

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = frozenset({"temperature", "humidity", "pressure"})
AUTH_FAILURE_STATUSES = frozenset({400, 401, 403})


def _as_list(raw: Any) -> Any:
    if isinstance(raw, str):
        return [raw]
    return raw


Number = Annotated[float, BeforeValidator(decode_number)]
OptionalNumber = Annotated[Optional[float], BeforeValidator(decode_optional_number)]
Timestamp = Annotated[datetime, BeforeValidator(decode_timestamp)]


@dataclass(frozen=True)
class DeviceSeries:
    """Ordered ``(type name, value)`` pairs reported by one device."""

    device_id: str
    values: tuple[tuple[str, float], ...]


@dataclass(frozen=True)
class MeasurementBlock:
    key: str
    devices: tuple[DeviceSeries, ...]


class NAPlace(BaseModel):
    # Longitude first, latitude second.
    location: list[Number] = Field(default_factory=list)
    altitude: Number = 0.0
    country: Optional[str] = None
    timezone: Optional[str] = None

    def to_location(self) -> GeoLocation:
        longitude = self.location[0] if len(self.location) > 0 else 0.0
        latitude = self.location[1] if len(self.location) > 1 else 0.0
        return GeoLocation(latitude=latitude, longitude=longitude, altitude=self.altitude)


class NAMeasure(BaseModel):
    type: Annotated[list[str], BeforeValidator(_as_list)]
    res: dict[str, list[OptionalNumber]]


class NAStation(BaseModel):
    id: Optional[str] = Field(default=None, alias="_id")
    place: NAPlace = Field(default_factory=NAPlace)
    measures: dict[str, Any] = Field(default_factory=dict)

    def measurement_blocks(self) -> list[MeasurementBlock]:
        """Typed view of ``measures``.

        Wind and rain modules report flat fields without ``type``/``res`` and
        are skipped. Values past the end of ``type`` are dropped.
        """
        blocks: list[MeasurementBlock] = []
        for key, raw in self.measures.items():
            if not isinstance(raw, dict) or "type" not in raw or "res" not in raw:
                continue
            measure = NAMeasure.model_validate(raw)
            devices = tuple(
                DeviceSeries(
                    device_id=device_id,
                    values=tuple(
                        (type_name, value)
                        for type_name, value in zip(measure.type, values)
                        if value is not None
                    ),
                )
                for device_id, values in measure.res.items()
            )
            blocks.append(MeasurementBlock(key=key, devices=devices))
        return blocks


class NAResponse(BaseModel):
    status: Optional[str] = None
    time_server: Timestamp
    body: list[NAStation] = Field(default_factory=list)


def decode_response(payload: Any) -> NAResponse:
    return NAResponse.model_validate(payload)


def to_canonical(response: NAResponse) -> list[CanonicalReading]:
    """Emit one reading per temperature, humidity or pressure position."""
    readings: list[CanonicalReading] = []
    for station in response.body:
        location = station.place.to_location()
        for block in station.measurement_blocks():
            for device in block.devices:
                for type_name, value in device.values:
                    if type_name not in SUPPORTED_TYPES:
                        continue
                    readings.append(
                        CanonicalReading(
                            timestamp=response.time_server,
                            location=location,
                            provider=Provider.netatmo,
                            provider_sensor_id=block.key,
                            **{type_name: value},
                        )
                    )
    return readings


class NetatmoConnector(ProviderConnector):
    """Polls ``getpublicdata`` with a bearer token, refreshing it when rejected."""

    provider = Provider.netatmo

    def __init__(
        self,
        client: httpx.AsyncClient,
        sink: ReadingSink,
        credentials: CredentialStore,
        url: str,
        bbox: BoundingBox,
    ) -> None:
        super().__init__(client, sink)
        self.credentials = credentials
        self.url = url
        self.bbox = bbox

    @property
    def query_params(self) -> dict[str, str]:
        return {
            "lat_ne": str(self.bbox.lat_max),
            "lon_ne": str(self.bbox.lon_max),
            "lat_sw": str(self.bbox.lat_min),
            "lon_sw": str(self.bbox.lon_min),
            "filter": "false",
        }

    async def fetch_readings(self) -> list[CanonicalReading]:
        if self.credentials.is_expired():
            await self.credentials.refresh(self.client, self.credentials.access_token)

        used_token = self.credentials.access_token
        response = await self._get_public_data()
        if response.status_code in AUTH_FAILURE_STATUSES:
            logger.info(
                "Access token rejected; refreshing.",
                extra={"provider": self.provider.value, "status_code": response.status_code},
            )
            await self.credentials.refresh(self.client, used_token)
            response = await self._get_public_data()
            if response.status_code >= 400:
                raise AuthorizationError(
                    "Failed to fetch netatmo data despite access token refresh "
                    f"(HTTP {response.status_code})."
                )

        self._handle_response(response)
        try:
            decoded = decode_response(self._json(response))
        except ValidationError as exc:
            raise ProviderError("netatmo returned an unexpected payload") from exc
        if decoded.time_server == ZERO_TIMESTAMP:
            raise ProviderError("netatmo returned an undecodable time_server")
        return to_canonical(decoded)

    async def _get_public_data(self) -> httpx.Response:
        return await self.client.get(
            self.url,
            params=self.query_params,
            headers=self.credentials.authorization_header(),
        )

