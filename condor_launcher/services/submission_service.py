# services/submission_service.py
"""
Renders the files that make up an HTCondor submission for one job.

Everything here is pure string construction; the only function touching
the filesystem is write_submission_files, which is kept separate so the
generators can be tested on their own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import yaml

from condor_launcher.services.config_service import LauncherConfig
from condor_launcher.services.job_models import Job, classad_string

SUBMIT_FILENAME       = "iplant.cmd"
JOB_CONFIG_FILENAME   = "config"
JOB_FILENAME          = "job"
IRODS_CONFIG_FILENAME = "irods-config"

ROAD_RUNNER_PATH = "/usr/local/bin/road-runner"

TRANSFER_INPUT_FILES = (IRODS_CONFIG_FILENAME, SUBMIT_FILENAME, JOB_CONFIG_FILENAME, JOB_FILENAME)
TRANSFER_OUTPUT_FILES = (
    "logs/de-transfer-trigger.log",
    "logs/logs-stdout-output",
    "logs/logs-stderr-output",
)


class RenderError(ValueError):
    pass


@dataclass(frozen=True)
class SubmissionBundle:
    submit_file : bytes
    job_config  : bytes
    irods_config: bytes
    job_document: bytes

    def files(self) -> Dict[str, bytes]:
        return {
            SUBMIT_FILENAME      : self.submit_file,
            JOB_CONFIG_FILENAME  : self.job_config,
            JOB_FILENAME         : self.job_document,
            IRODS_CONFIG_FILENAME: self.irods_config,
        }


def generate_condor_submit(job: Job) -> str:
    """
    Returns the contents of the iplant.cmd submit description.

    Raises RenderError when the job has no steps or no disk request; the
    caller is expected to have filled in the disk default beforehand.
    """
    if not job.steps:
        raise RenderError(f"Job {job.invocation_id} has no steps to run")
    if not job.request_disk.strip():
        raise RenderError(f"Job {job.invocation_id} has a blank request_disk")

    first_component = job.steps[0].component

    lines = [
        "universe = vanilla",
        f"executable = {ROAD_RUNNER_PATH}",
        "rank = mips",
        f"arguments = --config {JOB_CONFIG_FILENAME} --job {JOB_FILENAME}",
        "output = script-output.log",
        "error = script-error.log",
        "log = condor.log",
    ]
    if job.group:
        lines.append(f"accounting_group = {job.group}")
        lines.append(f"accounting_group_user = {job.accounting_group_user}")
    lines += [
        f"request_disk = {job.request_disk}",
        f"+IpcUuid = {classad_string(job.invocation_id)}",
        '+IpcJobId = "generated_script"',
        f"+IpcUsername = {classad_string(job.submitter)}",
        f"+IpcUserGroups = {job.format_user_groups()}",
        f"concurrency_limits = {job.user_id_for_submission()}",
        f"+IpcExe = {classad_string(first_component.name)}",
        f"+IpcExePath = {classad_string(first_component.location)}",
        "should_transfer_files = YES",
        f"transfer_input_files = {','.join(TRANSFER_INPUT_FILES)}",
        f"transfer_output_files = {','.join(TRANSFER_OUTPUT_FILES)}",
        "when_to_transfer_output = ON_EXIT_OR_EVICT",
        "notification = NEVER",
        "queue",
    ]
    return "\n".join(lines) + "\n"


def generate_job_config(config: LauncherConfig) -> str:
    """The config file road-runner reads on the execute node."""
    data = {
        "amqp": {"uri": config.amqp.uri},
        "irods": {"base": config.irods.base},
        "porklock": {
            "image": config.porklock.image,
            "tag": config.porklock.tag,
        },
        "condor": {"filter_files": config.condor.filter_files},
    }
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def generate_irods_config(config: LauncherConfig) -> str:
    irods = config.irods
    entries = [
        ("irods-host", irods.host),
        ("irods-port", irods.port),
        ("irods-user", irods.user),
        ("irods-pass", irods.password),
        ("irods-home", irods.base),
        ("irods-zone", irods.zone),
        ("irods-resc", irods.resc),
    ]
    return "".join(f"porklock.{key} = {value}\n" for key, value in entries)


def generate_job_document(job: Job) -> str:
    return job.model_dump_json(by_alias=True)


def render_submission_bundle(job: Job, config: LauncherConfig) -> SubmissionBundle:
    return SubmissionBundle(
        submit_file=generate_condor_submit(job).encode("utf-8"),
        job_config=generate_job_config(config).encode("utf-8"),
        irods_config=generate_irods_config(config).encode("utf-8"),
        job_document=generate_job_document(job).encode("utf-8"),
    )


def write_submission_files(directory: Path, bundle: SubmissionBundle) -> Dict[str, Path]:
    """
    Writes the bundle into directory and returns the written paths keyed by filename.
    The irods-config holds the storage password and is only readable by the owner.
    """
    written: Dict[str, Path] = {}
    for filename, contents in bundle.files().items():
        mode = 0o600 if filename == IRODS_CONFIG_FILENAME else 0o644
        path = directory / filename
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(contents)
        os.chmod(path, mode)
        written[filename] = path
    return written
