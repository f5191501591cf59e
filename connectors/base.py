"""Shared plumbing for provider connectors: poll outcome, HTTP helpers, sink."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

import httpx

from models.readings import CanonicalReading, Provider

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """A provider request or payload could not be turned into readings."""


class AuthorizationError(ProviderError):
    """Credentials were rejected and could not be renewed."""


class PollOutcome(str, Enum):
    succeeded = "succeeded"
    failed = "failed"


@dataclass(frozen=True)
class PollResult:
    """Outcome of one scheduled poll. Cancellation is never a result; it propagates."""

    provider: Provider
    outcome: PollOutcome
    reading_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is PollOutcome.succeeded


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive latitude/longitude rectangle."""

    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.lat_min <= latitude <= self.lat_max
            and self.lon_min <= longitude <= self.lon_max
        )


class ReadingSink(Protocol):
    def insert_many(self, readings: Sequence[CanonicalReading]) -> None:
        ...


class ProviderConnector:
    """Fetch, normalize and persist one provider feed per call to :meth:`poll`.

    Subclasses implement :meth:`fetch_readings`. Every failure except
    cancellation is contained here so the scheduler never sees it.
    """

    provider: Provider

    def __init__(self, client: httpx.AsyncClient, sink: ReadingSink) -> None:
        self.client = client
        self.sink = sink

    async def fetch_readings(self) -> list[CanonicalReading]:
        raise NotImplementedError

    async def poll(self) -> PollResult:
        start_time = time.perf_counter()
        try:
            readings = await self.fetch_readings()
            if readings:
                await asyncio.to_thread(self.sink.insert_many, readings)
        except asyncio.CancelledError:
            logger.debug("Poll cancelled.", extra={"provider": self.provider.value})
            raise
        except Exception as exc:
            logger.error(
                "Poll failed; no readings were stored.",
                exc_info=True,
                extra={
                    "provider": self.provider.value,
                    "outcome": PollOutcome.failed.value,
                    "reason": type(exc).__name__,
                },
            )
            return PollResult(
                provider=self.provider, outcome=PollOutcome.failed, error=str(exc)
            )

        logger.info(
            "Stored sensor readings.",
            extra={
                "provider": self.provider.value,
                "outcome": PollOutcome.succeeded.value,
                "reading_count": len(readings),
                "duration_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return PollResult(
            provider=self.provider,
            outcome=PollOutcome.succeeded,
            reading_count=len(readings),
        )

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.provider.value} returned HTTP {response.status_code}"
            )
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.provider.value} returned invalid JSON") from exc
