"""Fixed-interval scheduling of collector and exporter jobs on one event loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

JobAction = Callable[[], Awaitable[Any]]


@dataclass
class JobStatus:
    """Bookkeeping for one job, exposed through the HTTP API."""

    name: str
    interval_seconds: float
    runs: int = 0
    skipped_ticks: int = 0
    running: bool = False
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_outcome: Optional[str] = None
    last_error: Optional[str] = None


@dataclass
class PeriodicJob:
    name: str
    interval: float
    action: JobAction
    status: JobStatus = field(init=False)
    _current: Optional[asyncio.Task[Any]] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"Interval for job {self.name!r} must be positive.")
        self.status = JobStatus(name=self.name, interval_seconds=self.interval)

    @property
    def is_running(self) -> bool:
        return self._current is not None and not self._current.done()


class JobAlreadyRunningError(RuntimeError):
    pass


class Scheduler:
    """Runs every registered job immediately and then once per interval.

    Each job has its own timer loop, so a slow job never delays another. A
    tick that fires while the previous run of the same job is still in
    flight is skipped.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, PeriodicJob] = {}
        self._loops: list[asyncio.Task[None]] = []

    @property
    def jobs(self) -> list[PeriodicJob]:
        return list(self._jobs.values())

    @property
    def started(self) -> bool:
        return bool(self._loops)

    def add_job(self, name: str, interval: float, action: JobAction) -> PeriodicJob:
        if name in self._jobs:
            raise ValueError(f"Job {name!r} is already registered.")
        job = PeriodicJob(name=name, interval=interval, action=action)
        self._jobs[name] = job
        return job

    def get_job(self, name: str) -> PeriodicJob:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"Job {name!r} is not registered.") from None

    def start(self) -> None:
        """Spawn one timer loop per job on the running event loop."""
        if self._loops:
            return
        for job in self._jobs.values():
            self._loops.append(asyncio.create_task(self._run_loop(job), name=f"loop:{job.name}"))

    async def stop(self) -> None:
        """Cancel every timer loop and any run still in flight."""
        tasks = list(self._loops)
        tasks.extend(
            job._current for job in self._jobs.values() if job._current is not None
        )
        self._loops.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def run_forever(self) -> None:
        self.start()
        try:
            await asyncio.gather(*self._loops)
        finally:
            await self.stop()

    def trigger(self, name: str) -> asyncio.Task[Any]:
        """Start a run of ``name`` now, outside its regular timer."""
        job = self.get_job(name)
        if job.is_running:
            raise JobAlreadyRunningError(f"Job {name!r} is already running.")
        return self._launch(job)

    async def _run_loop(self, job: PeriodicJob) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            if job.is_running:
                job.status.skipped_ticks += 1
                logger.warning(
                    "Previous run still in progress; skipping tick.",
                    extra={"job": job.name, "skipped_ticks": job.status.skipped_ticks},
                )
            else:
                self._launch(job)
            next_tick += job.interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    def _launch(self, job: PeriodicJob) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._run_once(job), name=f"run:{job.name}")
        job._current = task
        return task

    async def _run_once(self, job: PeriodicJob) -> Any:
        status = job.status
        status.running = True
        status.runs += 1
        status.last_started_at = datetime.now(timezone.utc)
        try:
            result = await job.action()
        except asyncio.CancelledError:
            status.last_outcome = "cancelled"
            raise
        except Exception as exc:
            # Actions contain their own failures; this only guards the loop.
            status.last_outcome = "failed"
            status.last_error = str(exc)
            logger.error(
                "Job raised unexpectedly.",
                exc_info=True,
                extra={"job": job.name, "outcome": "failed"},
            )
            return None
        finally:
            status.running = False
            status.last_finished_at = datetime.now(timezone.utc)

        status.last_outcome = _outcome_of(result)
        status.last_error = getattr(result, "error", None)
        return result


def _outcome_of(result: Any) -> str:
    outcome = getattr(result, "outcome", None)
    if outcome is None:
        return "succeeded"
    return getattr(outcome, "value", str(outcome))
