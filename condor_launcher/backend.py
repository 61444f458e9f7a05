from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from pydantic import ValidationError

from condor_launcher.services.condor_service import CondorError, CondorService
from condor_launcher.services.config_service import LauncherConfig
from condor_launcher.services.job_models import Job, JobRequest, JobState, StopRequest, UpdateMessage
from condor_launcher.services.path_resolution_service import SubmissionPathService
from condor_launcher.services.submission_service import (
    SUBMIT_FILENAME,
    RenderError,
    render_submission_bundle,
    write_submission_files,
)

logger = logging.getLogger(__name__)


class JobUpdatePublisher(Protocol):
    async def publish_job_update(self, update: UpdateMessage) -> None: ...


class CondorLauncherBackend:
    def __init__(
        self,
        config: LauncherConfig,
        publisher: JobUpdatePublisher,
        condor_service: Optional[CondorService] = None,
        path_service: Optional[SubmissionPathService] = None,
    ):
        self.config         = config
        self.publisher      = publisher
        self.condor_service = condor_service or CondorService(config.condor)
        self.path_service   = path_service or SubmissionPathService()

    def prepare_job(self, job: Job) -> Job:
        """Fills in the defaults a job needs before it can be rendered"""
        if not job.request_disk:
            job.request_disk = self.config.condor.request_disk or "0"
        if not job.condor_log_path:
            job.condor_log_path = self.config.condor.log_path
        return job

    # -------------------------------------------------------------------------
    # Launch / stop
    # -------------------------------------------------------------------------

    def _stage_submission(self, job: Job):
        log_dir = self.path_service.create_submission_directory(job)
        bundle = render_submission_bundle(job, self.config)
        return write_submission_files(log_dir.parent, bundle)

    async def launch(self, job: Job) -> str:
        """
        Creates the submission directory, writes the submission files and runs
        condor_submit. Files already written are left in place on failure.
        """
        try:
            written = await asyncio.to_thread(self._stage_submission, job)
        except RenderError as e:
            logger.error("Error creating submission files for %s: %s", job.invocation_id, e)
            raise
        except OSError as e:
            logger.error("Error creating submission directory for %s: %s", job.invocation_id, e)
            raise

        try:
            condor_id = await self.condor_service.submit(written[SUBMIT_FILENAME])
        except (CondorError, OSError) as e:
            logger.error("Error submitting job %s:\n%s", job.invocation_id, e)
            raise

        job.assign_condor_id(condor_id)
        logger.info("Condor job id is %s", condor_id)
        return condor_id

    async def stop(self, job: Job) -> str:
        if not job.condor_id:
            raise ValueError(f"Job {job.invocation_id} has no Condor ID, it was never submitted")
        return await self.condor_service.remove(job.condor_id)

    # -------------------------------------------------------------------------
    # Message handlers
    # -------------------------------------------------------------------------

    async def publish_update(self, job: Job, state: JobState, message: str) -> None:
        try:
            await self.publisher.publish_job_update(UpdateMessage(job=job, state=state, message=message))
        except Exception as e:
            logger.error("Failed to publish %s update for job %s: %s", state.value, job.invocation_id, e)

    async def handle_launch_message(self, body: bytes) -> None:
        try:
            request = JobRequest.model_validate_json(body)
        except ValidationError as e:
            logger.error("Could not decode launch request: %s\n%s", e, body.decode("utf-8", errors="replace"))
            return

        job = self.prepare_job(request.job)

        if not request.is_launch:
            logger.debug("Ignoring '%s' command for job %s", request.command, job.invocation_id)
            return

        try:
            condor_id = await self.launch(job)
        except (RenderError, CondorError, OSError, ValueError) as e:
            logger.error("Failed to launch job %s: %s", job.invocation_id, e)
            await self.publish_update(job, JobState.FAILED, f"condor-launcher failed to launch job:\n {e}")
            return

        logger.info("Launched Condor ID %s", condor_id)
        await self.publish_update(job, JobState.SUBMITTED, f"Launched Condor ID {condor_id}")

    async def handle_stop_message(self, body: bytes) -> None:
        try:
            request = StopRequest.model_validate_json(body)
        except ValidationError as e:
            logger.error("Could not decode stop request: %s\n%s", e, body.decode("utf-8", errors="replace"))
            return

        try:
            condor_ids = await self.condor_service.find_jobs(request.invocation_id)
        except (CondorError, OSError) as e:
            logger.error("Could not look up Condor jobs for %s: %s", request.invocation_id, e)
            return

        if not condor_ids:
            logger.warning("No Condor jobs found for invocation %s", request.invocation_id)
            return

        for condor_id in condor_ids:
            try:
                job = Job(
                    invocation_id=request.invocation_id,
                    submitter=request.username or "unknown",
                    condor_id=condor_id,
                )
                await self.stop(job)
            except (CondorError, OSError, ValueError) as e:
                logger.error("Failed to stop Condor job %s: %s", condor_id, e)
                continue
            await self.publish_update(job, JobState.FAILED, "Job was killed")
