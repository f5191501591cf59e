"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from services.scheduler import JobStatus


class JobStatusResponse(BaseModel):
    """Scheduling state of one collector or export job."""

    name: str
    interval_seconds: float = Field(..., gt=0)
    runs: int = Field(..., ge=0)
    skipped_ticks: int = Field(
        ..., ge=0, description="Ticks dropped because the previous run was still in flight."
    )
    running: bool
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_outcome: Optional[str] = None
    last_error: Optional[str] = None

    @classmethod
    def from_status(cls, status: JobStatus) -> "JobStatusResponse":
        return cls(
            name=status.name,
            interval_seconds=status.interval_seconds,
            runs=status.runs,
            skipped_ticks=status.skipped_ticks,
            running=status.running,
            last_started_at=status.last_started_at,
            last_finished_at=status.last_finished_at,
            last_outcome=status.last_outcome,
            last_error=status.last_error,
        )


class TriggerResponse(BaseModel):
    """Immediate response after a job run was started on demand."""

    name: str
    detail: str = "Job run started."
