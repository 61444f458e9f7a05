# services/path_resolution_service.py
from __future__ import annotations

import logging
from pathlib import Path

from condor_launcher.services.job_models import LOG_DIRNAME, Job

logger = logging.getLogger(__name__)


class SubmissionPathService:
    """
    Resolves where a job's submission files and Condor logs live.

    Layout per job:
        <condor_log_path>/<submitter>/<uuid>/   submit file, config, job, irods-config
        <condor_log_path>/<submitter>/<uuid>/logs/
    """

    def log_directory(self, job: Job) -> Path:
        dir_path = job.condor_log_directory()
        if dir_path.name != LOG_DIRNAME:
            dir_path = dir_path / LOG_DIRNAME
        return dir_path

    def submission_directory(self, job: Job) -> Path:
        return self.log_directory(job).parent

    def create_submission_directory(self, job: Job) -> Path:
        """Creates the log directory (and its parents) and returns its path. Safe to repeat."""
        dir_path = self.log_directory(job)
        dir_path.mkdir(mode=0o755, parents=True, exist_ok=True)
        logger.debug("Submission directory ready at %s", dir_path)
        return dir_path
