"""Moves accumulated readings from the time-series store into the archive."""

from __future__ import annotations

import asyncio
import csv
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol, Sequence

from models.readings import CanonicalReading
from storage.mock_blob import BlobAlreadyExistsError

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "timestamp",
    "latitude",
    "longitude",
    "altitude",
    "temperature",
    "humidity",
    "pressure",
    "provider",
    "provider_sensor_id",
    "sensor_type_name",
)


class ReadingSource(Protocol):
    def find_all(self) -> list[CanonicalReading]:
        ...

    def delete_many(self, ids: Iterable[str]) -> int:
        ...


class ArchiveSink(Protocol):
    def upload(self, name: str, content: bytes, overwrite: bool = False) -> None:
        ...

    def get_blob(self, name: str) -> bytes:
        ...


class ExportOutcome(str, Enum):
    exported = "exported"
    empty = "empty"
    failed = "failed"


@dataclass(frozen=True)
class ExportResult:
    outcome: ExportOutcome
    archive_name: Optional[str] = None
    row_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is not ExportOutcome.failed


def archive_name_for(moment: datetime, suffix: str = "", extension: str = "csv") -> str:
    """``sensor_readings_<day>_<month>_<year>.<ext>`` without zero padding."""
    base = f"sensor_readings_{moment.day}_{moment.month}_{moment.year}"
    return f"{base}{suffix}.{extension}"


def write_csv(readings: Sequence[CanonicalReading], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for reading in readings:
            writer.writerow(_to_row(reading))


def _to_row(reading: CanonicalReading) -> dict[str, object]:
    return {
        "id": reading.id,
        "timestamp": reading.timestamp.isoformat(),
        "latitude": reading.location.latitude,
        "longitude": reading.location.longitude,
        "altitude": reading.location.altitude,
        "temperature": reading.temperature,
        "humidity": reading.humidity,
        "pressure": reading.pressure,
        "provider": reading.provider.value,
        "provider_sensor_id": reading.provider_sensor_id,
        "sensor_type_name": reading.sensor_type_name,
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArchiveExporter:
    """Export-then-purge cycle.

    The store is only purged after the archive confirmed the upload, and only
    the readings that were exported are removed. A failed cycle leaves the
    store untouched so the next one exports the same readings again.
    """

    def __init__(
        self,
        source: ReadingSource,
        archive: ArchiveSink,
        work_dir: Path,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.archive = archive
        self.work_dir = work_dir
        self._clock = clock

    async def export(self) -> ExportResult:
        """Run one cycle as separate awaited steps.

        Cancellation lands between steps. Once the upload step has been
        cancelled the purge never runs, so the next cycle finds the same
        readings and confirms the upload by reading it back.
        """
        start_time = time.perf_counter()
        name: Optional[str] = None
        try:
            readings = await asyncio.to_thread(self.source.find_all)
            if not readings:
                logger.info(
                    "No readings to export.", extra={"outcome": ExportOutcome.empty.value}
                )
                return ExportResult(outcome=ExportOutcome.empty)

            now = self._clock()
            name = archive_name_for(now)
            logger.info(
                "Uploading readings to archive.",
                extra={"archive_name": name, "row_count": len(readings)},
            )
            content = await asyncio.to_thread(self._stage, readings, self.work_dir / name)
            name = await asyncio.to_thread(self._upload, name, content, now)
            await asyncio.to_thread(
                self.source.delete_many, [reading.id for reading in readings]
            )
        except asyncio.CancelledError:
            logger.debug("Export cancelled; store left untouched.", extra={"archive_name": name})
            raise
        except Exception as exc:
            logger.error(
                "Export failed; store left untouched.",
                exc_info=True,
                extra={
                    "archive_name": name,
                    "outcome": ExportOutcome.failed.value,
                    "reason": type(exc).__name__,
                },
            )
            return ExportResult(outcome=ExportOutcome.failed, archive_name=name, error=str(exc))

        logger.info(
            "Exported readings and purged store.",
            extra={
                "archive_name": name,
                "row_count": len(readings),
                "outcome": ExportOutcome.exported.value,
                "duration_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return ExportResult(
            outcome=ExportOutcome.exported, archive_name=name, row_count=len(readings)
        )

    @staticmethod
    def _stage(readings: Sequence[CanonicalReading], local_path: Path) -> bytes:
        """Write the CSV work file and return its bytes; the file never outlives the call."""
        try:
            write_csv(readings, local_path)
            return local_path.read_bytes()
        finally:
            local_path.unlink(missing_ok=True)

    def _upload(self, name: str, content: bytes, now: datetime) -> str:
        try:
            self.archive.upload(name, content, overwrite=False)
            return name
        except BlobAlreadyExistsError:
            existing = self.archive.get_blob(name)
            if existing == content:
                # An earlier cycle uploaded this exact file but did not purge.
                logger.warning(
                    "Archive already holds this export; treating upload as confirmed.",
                    extra={"archive_name": name},
                )
                return name

        suffixed = archive_name_for(now, suffix=now.strftime("_%H%M%S"))
        logger.warning(
            "Archive name taken; uploading under a time-suffixed name.",
            extra={"archive_name": suffixed},
        )
        self.archive.upload(suffixed, content, overwrite=False)
        return suffixed
