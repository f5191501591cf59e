"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import JobStatusResponse, TriggerResponse
from services.collector import CollectorService, build_default_collector
from services.scheduler import JobAlreadyRunningError

router = APIRouter()


def get_collector() -> CollectorService:
    return build_default_collector()


@router.get(
    "/jobs",
    response_model=list[JobStatusResponse],
    summary="List scheduled jobs and the outcome of their latest run.",
)
async def list_jobs(
    collector: CollectorService = Depends(get_collector),
) -> list[JobStatusResponse]:
    return [JobStatusResponse.from_status(job.status) for job in collector.scheduler.jobs]


@router.post(
    "/jobs/{name}/trigger",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=TriggerResponse,
    summary="Run a job now, outside its regular interval.",
)
async def trigger_job(
    name: str,
    collector: CollectorService = Depends(get_collector),
) -> TriggerResponse:
    try:
        collector.scheduler.trigger(name)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {name!r} is not registered.",
        ) from exc
    except JobAlreadyRunningError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return TriggerResponse(name=name)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(
    collector: CollectorService = Depends(get_collector),
) -> dict[str, str]:
    return {"status": "ok" if collector.scheduler.started else "starting"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
