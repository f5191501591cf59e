"""Wires connectors, the exporter and the scheduler into one running service."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

import httpx

from connectors.base import BoundingBox, PollResult, ProviderConnector
from connectors.credentials import CredentialStore, OAuthCredentials
from connectors.netatmo import NetatmoConnector
from connectors.sensor_community import SensorCommunityConnector
from datastore.mock_timeseries import MockTimeSeriesCollection, build_default_collection
from services.exporter import ArchiveExporter, ExportResult
from services.scheduler import Scheduler
from settings import Settings, get_settings
from storage.mock_blob import MockBlobContainer, build_default_container

logger = logging.getLogger(__name__)

SENSOR_COMMUNITY_JOB = "sensor-community"
NETATMO_JOB = "netatmo"
EXPORT_JOB = "export"


class CollectorService:
    """Owns the HTTP client, the connectors and their schedule."""

    def __init__(
        self,
        settings: Settings,
        collection: MockTimeSeriesCollection,
        container: MockBlobContainer,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        settings.require_netatmo_credentials()
        self.settings = settings
        self.collection = collection
        self.container = container
        self.client = client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
        )
        bbox = BoundingBox(
            lat_min=settings.lat_min,
            lat_max=settings.lat_max,
            lon_min=settings.lon_min,
            lon_max=settings.lon_max,
        )
        self.credentials = CredentialStore(
            OAuthCredentials(
                access_token=settings.netatmo_access_token or "",
                refresh_token=settings.netatmo_refresh_token or "",
                client_id=settings.netatmo_client_id or "",
                client_secret=settings.netatmo_client_secret or "",
            ),
            token_url=settings.netatmo_token_url,
        )
        self.connectors: dict[str, ProviderConnector] = {
            SENSOR_COMMUNITY_JOB: SensorCommunityConnector(
                client=self.client,
                sink=collection,
                url=settings.sensor_community_url,
                country=settings.sensor_community_country,
                bbox=bbox,
                excluded_types=settings.sensor_community_excluded_types,
            ),
            NETATMO_JOB: NetatmoConnector(
                client=self.client,
                sink=collection,
                credentials=self.credentials,
                url=settings.netatmo_url,
                bbox=bbox,
            ),
        }
        self.exporter = ArchiveExporter(
            source=collection,
            archive=container,
            work_dir=Path(settings.export_work_dir),
        )
        self.scheduler = Scheduler()
        self.scheduler.add_job(
            SENSOR_COMMUNITY_JOB,
            settings.sensor_community_interval,
            self.connectors[SENSOR_COMMUNITY_JOB].poll,
        )
        self.scheduler.add_job(
            NETATMO_JOB, settings.netatmo_interval, self.connectors[NETATMO_JOB].poll
        )
        self.scheduler.add_job(EXPORT_JOB, settings.export_interval, self.exporter.export)

    async def start(self) -> None:
        logger.info("Starting collector jobs.")
        self.scheduler.start()

    async def run_forever(self) -> None:
        try:
            await self.scheduler.run_forever()
        finally:
            await self.client.aclose()

    async def poll(self, name: str) -> PollResult:
        try:
            connector = self.connectors[name]
        except KeyError:
            raise KeyError(f"Unknown provider {name!r}.") from None
        return await connector.poll()

    async def export(self) -> ExportResult:
        return await self.exporter.export()

    async def shutdown(self) -> None:
        """Cancel running jobs and release the HTTP client."""
        await self.scheduler.stop()
        await self.client.aclose()
        logger.info("Collector jobs stopped.")


@lru_cache
def build_default_collector() -> CollectorService:
    """Factory that wires the collector with default mocks."""
    return CollectorService(
        settings=get_settings(),
        collection=build_default_collection(),
        container=build_default_container(),
    )
