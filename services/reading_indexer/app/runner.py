"""
Job Runner

Runs every enabled job in its own background loop: run, sleep
`interval_seconds`, repeat. A job's next run only starts after the previous
one finished, so runs of the same job never overlap.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from .jobs import ScheduledJob


logger = logging.getLogger(__name__)


@dataclass
class JobStatus:
    """Latest known state of a scheduled job."""

    name: str
    kind: str
    runs: int = 0
    failures: int = 0
    last_ok: Optional[bool] = None
    last_finished_at: Optional[float] = None
    last_error: Optional[str] = None


def result_ok(result: Any) -> bool:
    """Results expose `ok`; anything else counts as success."""
    return bool(getattr(result, "ok", True))


async def run_job_once(job: ScheduledJob, status: Optional[JobStatus] = None) -> Any:
    """Run a job a single time, recording the outcome on `status`."""
    try:
        result = await job.run()
    except Exception as e:
        if status is not None:
            status.runs += 1
            status.failures += 1
            status.last_ok = False
            status.last_error = str(e)
            status.last_finished_at = time.time()
        raise

    ok = result_ok(result)
    if status is not None:
        status.runs += 1
        status.last_ok = ok
        status.last_finished_at = time.time()
        if not ok:
            status.failures += 1
            errors = getattr(result, "errors", None) or []
            status.last_error = errors[-1] if errors else "run failed"
        else:
            status.last_error = None
    return result


class JobRunner:
    """
    Owns the background loops of all enabled jobs.

    Usage:
        runner = JobRunner(jobs)
        runner.start()
        ...
        await runner.stop()
    """

    def __init__(self, jobs: list[ScheduledJob]):
        self.jobs = [job for job in jobs if job.enabled]
        self.statuses: dict[str, JobStatus] = {job.name: JobStatus(name=job.name, kind=job.kind) for job in self.jobs}
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self._tasks:
            logger.warning("Job runner already started")
            return
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job-{job.name}"))
        logger.info(f"Started {len(self._tasks)} job loops")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Job loops stopped")

    async def _loop(self, job: ScheduledJob) -> None:
        status = self.statuses[job.name]
        logger.info(f"Job '{job.name}' ({job.kind}) scheduled every {job.interval_seconds}s")
        while True:
            try:
                await run_job_once(job, status)
            except asyncio.CancelledError:
                logger.info(f"Job '{job.name}' cancelled")
                raise
            except Exception as e:
                logger.error(f"Job '{job.name}' error: {type(e).__name__}: {e}")
            await asyncio.sleep(job.interval_seconds)

    async def health(self) -> dict:
        """Health check payload for /health."""
        failing = [s.name for s in self.statuses.values() if s.last_ok is False]
        if not self.jobs:
            return {"status": "degraded", "message": "No enabled jobs"}
        if failing:
            return {"status": "degraded", "message": f"Last run failed: {', '.join(sorted(failing))}"}
        return {"status": "healthy", "message": f"{len(self.jobs)} jobs scheduled"}
