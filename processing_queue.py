"""
TubeIngest - Processing Queue

Serial, FIFO drain of waiting jobs. One ProcessingQueue is created at
startup and handed to the routes; it owns the registry of in-flight runs
and is the only writer of status transitions while a job is processing.
The jobs table stays the source of truth: the registry is lost on restart,
and db.recover_orphaned_jobs cleans up after it.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from constants import FORCE_PROCESS_WINDOW, STALE_JOB_CHECK_INTERVAL
from db import recover_orphaned_jobs
from downloads import IngestResult, process_ingestion
from jobs import (
    JobStatus, claim_next_job, update_job_status,
    count_waiting_jobs, count_processing_jobs,
)

logger = logging.getLogger(__name__)

Pipeline = Callable[..., Awaitable[IngestResult]]


class ProcessingQueue:
    """At most one job runs at a time as long as this object is the only dequeuer."""

    def __init__(self, pipeline: Pipeline = process_ingestion):
        self._pipeline = pipeline
        self._active: dict[str, asyncio.Task] = {}
        self._stages: dict[str, JobStatus] = {}
        self._drain_task: asyncio.Task | None = None
        self._rekick = False
        self._monitor_task: asyncio.Task | None = None

    # -- registry -----------------------------------------------------------

    @property
    def active_ids(self) -> list[str]:
        return list(self._active)

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    def stage_of(self, job_id: str) -> JobStatus | None:
        return self._stages.get(job_id)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def snapshot(self) -> dict:
        return {
            "draining": self.is_draining,
            "active": [
                {"job_id": job_id, "stage": self._stages[job_id].value}
                for job_id in self._active if job_id in self._stages
            ],
        }

    # -- dequeue / run ------------------------------------------------------

    async def start_next(self) -> str | None:
        """Claim the oldest waiting job and launch its run without awaiting it.

        Returns the job id, or None when nothing is waiting.
        """
        job = await asyncio.to_thread(claim_next_job)
        if job is None:
            logger.debug("No jobs waiting")
            return None

        job_id = job["id"]
        self._stages[job_id] = JobStatus.DOWNLOADING
        logger.info("Starting job %s (%s)", job_id, job["source_url"])
        self._active[job_id] = asyncio.create_task(self._run(job), name=f"ingest-{job_id}")
        return job_id

    async def _run(self, job: dict) -> None:
        job_id = job["id"]

        async def on_stage(status: JobStatus) -> None:
            self._stages[job_id] = status
            logger.info("Job %s -> %s", job_id, status.value)

        try:
            result = await self._pipeline(job, on_stage)
            await asyncio.to_thread(
                update_job_status, job_id, JobStatus.COMPLETED,
                title=result.title,
                storage_url=result.storage_url,
                thumbnail_url=result.thumbnail_url,
                video_id=result.video_id,
            )
            logger.info("Job %s completed: %s", job_id, result.storage_url)
        except Exception as e:
            logger.exception("Job %s failed", job_id)
            try:
                await asyncio.to_thread(update_job_status, job_id, JobStatus.ERROR, str(e) or type(e).__name__)
            except Exception:
                # Row stays 'processing'; orphan recovery will fail it once we drop it from the registry
                logger.exception("Could not record failure for job %s", job_id)
        finally:
            self._active.pop(job_id, None)
            self._stages.pop(job_id, None)

    async def drain(self) -> int:
        """Run waiting jobs one after another until none are left. Returns how many ran."""
        processed = 0
        while True:
            # A kick during the claim or the run means a job may have landed after our SELECT
            self._rekick = False
            job_id = await self.start_next()
            if job_id is None:
                if self._rekick:
                    continue
                return processed
            task = self._active.get(job_id)
            if task is not None:
                await task
            processed += 1

    def kick(self) -> bool:
        """Start a background drain, or ask the running one to look again. True if a new drain started."""
        if self.is_draining:
            self._rekick = True
            return False
        self._drain_task = asyncio.create_task(self._drain_logged(), name="ingest-drain")
        return True

    async def _drain_logged(self) -> None:
        try:
            processed = await self.drain()
            if processed:
                logger.info("Queue drained (%d job(s) processed)", processed)
        except Exception:
            logger.exception("Queue drain stopped unexpectedly")

    async def force_process(self) -> dict:
        """Manual trigger: start draining only if nothing is in flight."""
        if self.is_draining or self._active:
            return {"started": False, "count": 0, "message": "A job is already being processed"}

        processing = await asyncio.to_thread(count_processing_jobs)
        if processing:
            return {"started": False, "count": 0, "message": "A job is already being processed"}

        waiting = await asyncio.to_thread(count_waiting_jobs, FORCE_PROCESS_WINDOW)
        if waiting == 0:
            return {"started": False, "count": 0, "message": "No jobs waiting to be processed"}

        self.kick()
        return {"started": True, "count": waiting, "message": f"Processing {waiting} queued job(s)"}

    # -- lifecycle ----------------------------------------------------------

    async def recover(self) -> int:
        """Fail 'processing' rows that no run in this process owns."""
        return await asyncio.to_thread(recover_orphaned_jobs, self.active_ids)

    async def _orphan_monitor(self) -> None:
        """Background task that periodically checks for orphaned jobs while idle.

        Only runs recovery when nothing is in flight, so a row claimed a moment
        ago but not yet registered can't be mistaken for an orphan.
        """
        while True:
            await asyncio.sleep(STALE_JOB_CHECK_INTERVAL)
            if self.is_draining or self._active:
                continue
            try:
                await self.recover()
                self.kick()
            except Exception:
                logger.exception("Orphan monitor error")

    async def start(self) -> None:
        """Startup: recover jobs orphaned by a previous process, then resume the queue."""
        await self.recover()
        self.kick()
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._orphan_monitor(), name="ingest-orphan-monitor")

    async def stop(self) -> None:
        for task in (self._monitor_task, self._drain_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._monitor_task = None
        self._drain_task = None
