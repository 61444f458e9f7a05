# services/held_job_service.py
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from condor_launcher.services.condor_service import CondorError, CondorService, HeldJob
from condor_launcher.services.job_models import Job, JobState, UpdateMessage

if TYPE_CHECKING:
    from condor_launcher.backend import JobUpdatePublisher

logger = logging.getLogger(__name__)

HELD_CHECK_INTERVAL = 30.0

HeldJobSource = Callable[[], Awaitable[List[HeldJob]]]


class HeldJobReaper:
    """
    Periodically removes jobs that Condor reports as held.

    Runs as its own asyncio task and only shares the CondorService and the
    publisher with the launch path.
    """

    def __init__(
        self,
        condor_service: CondorService,
        publisher: "JobUpdatePublisher",
        held_job_source: Optional[HeldJobSource] = None,
        interval: float = HELD_CHECK_INTERVAL,
    ):
        self.condor_service  = condor_service
        self.publisher       = publisher
        self.held_job_source = held_job_source or condor_service.held_jobs
        self.interval        = interval
        self._task: Optional[asyncio.Task] = None

    async def kill_held_jobs(self) -> int:
        """Removes every held job once. Returns how many were removed."""
        try:
            held = await self.held_job_source()
        except (CondorError, OSError) as e:
            logger.error("Could not list held jobs: %s", e)
            return 0

        removed = 0
        for held_job in held:
            try:
                await self.condor_service.remove(held_job.condor_id)
            except (CondorError, OSError) as e:
                logger.error("Failed to remove held job %s: %s", held_job.condor_id, e)
                continue
            removed += 1
            logger.info("Removed held job %s (%s)", held_job.condor_id, held_job.invocation_id or "no uuid")
            await self._publish_removal(held_job)
        return removed

    async def _publish_removal(self, held_job: HeldJob) -> None:
        if not held_job.invocation_id:
            return
        try:
            job = Job(
                invocation_id=held_job.invocation_id,
                submitter=held_job.username or "unknown",
                condor_id=held_job.condor_id,
            )
            await self.publisher.publish_job_update(
                UpdateMessage(
                    job=job,
                    state=JobState.FAILED,
                    message=f"Job {held_job.condor_id} was held by Condor and has been removed",
                )
            )
        except Exception as e:
            logger.error("Failed to publish removal of held job %s: %s", held_job.condor_id, e)

    async def run(self) -> None:
        logger.info("Held job check running every %s seconds", self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.kill_held_jobs()
            except Exception:
                logger.exception("Held job check failed, retrying in %s seconds", self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Held job checker exited with an error")
