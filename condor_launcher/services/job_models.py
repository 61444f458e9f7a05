# services/job_models.py
from __future__ import annotations

import re
import socket
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

_SUBMISSION_ID_PATTERN = re.compile(r"[^A-Za-z0-9_]")

LOG_DIRNAME = "logs"


def classad_string(value: str) -> str:
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class JobState(str, Enum):
    QUEUED                 = "Queued"
    SUBMITTED              = "Submitted"
    RUNNING                = "Running"
    IMPENDING_CANCELLATION = "ImpendingCancellation"
    CANCELED               = "Canceled"
    COMPLETED              = "Completed"
    FAILED                 = "Failed"


class Command(str, Enum):
    LAUNCH = "launch"

    @classmethod
    def from_wire(cls, value) -> str:
        """
        Normalise a command tag. Older publishers send the integer
        position of the command instead of its name.
        """
        if isinstance(value, bool):
            raise ValueError(f"Invalid command tag: {value!r}")
        if isinstance(value, int):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value].value
            return str(value)
        return str(value).strip().lower()


class StepComponent(BaseModel):
    model_config = ConfigDict(extra="allow")

    name    : str = ""
    location: str = ""


class JobStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    component: StepComponent = Field(default_factory=StepComponent)


class Job(BaseModel):
    """
    A single analysis submission as decoded from the jobs exchange.

    Fields this service does not use are kept (extra="allow") so the
    serialized job document handed to the job process is complete.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    invocation_id  : str           = Field(alias="uuid")
    submitter      : str
    group          : str           = ""
    group_submitter: str           = ""
    request_disk   : str           = ""
    steps          : List[JobStep] = Field(default_factory=list)
    user_groups    : List[str]     = Field(default_factory=list)
    condor_id      : str           = ""
    condor_log_path: str           = ""

    @field_validator("invocation_id", "submitter")
    @classmethod
    def validate_path_segment(cls, v: str) -> str:
        # Both end up as directory names under the log path.
        if not v or v in (".", "..") or "/" in v or "\\" in v or "\x00" in v:
            raise ValueError(f"'{v}' is not usable as a directory name")
        return v

    @field_validator("invocation_id")
    @classmethod
    def validate_not_log_dirname(cls, v: str) -> str:
        if v == LOG_DIRNAME:
            raise ValueError(f"'{v}' is reserved for the Condor log directory")
        return v

    @field_validator("request_disk", mode="before")
    @classmethod
    def coerce_request_disk(cls, v):
        if v is None:
            return ""
        return str(v)

    @field_validator("steps", "user_groups", mode="before")
    @classmethod
    def coerce_null_lists(cls, v):
        return v or []

    @property
    def accounting_group_user(self) -> str:
        return self.group_submitter or self.submitter

    def user_id_for_submission(self) -> str:
        """Submitter reduced to characters HTCondor accepts in a concurrency limit name."""
        return _SUBMISSION_ID_PATTERN.sub("_", self.submitter)

    def format_user_groups(self) -> str:
        return "{" + ",".join(classad_string(group) for group in self.user_groups) + "}"

    def condor_log_directory(self) -> Path:
        return Path(self.condor_log_path) / self.submitter / self.invocation_id

    def assign_condor_id(self, condor_id: str) -> None:
        if self.condor_id and self.condor_id != condor_id:
            raise ValueError(
                f"Job {self.invocation_id} already has Condor ID {self.condor_id}, refusing to replace it with {condor_id}"
            )
        self.condor_id = condor_id


# -------------------------------------------------------------------------
# Messages exchanged on the jobs exchange
# -------------------------------------------------------------------------


class JobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(default=0, alias="Version")
    command: str = Field(default=Command.LAUNCH.value, alias="Command")
    job    : Job = Field(alias="Job")
    message: str = Field(default="", alias="Message")

    @field_validator("command", mode="before")
    @classmethod
    def normalize_command(cls, v):
        return Command.from_wire(v)

    @property
    def is_launch(self) -> bool:
        return self.command == Command.LAUNCH.value


class StopRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version      : int = Field(default=0, alias="Version")
    invocation_id: str = Field(alias="InvocationID")
    reason       : str = Field(default="", alias="Reason")
    username     : str = Field(default="", alias="Username")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class UpdateMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: int      = Field(default=0, alias="Version")
    job    : Job      = Field(alias="Job")
    state  : JobState = Field(alias="State")
    message: str      = Field(alias="Message")
    sent_on: str      = Field(default_factory=_utc_now, alias="SentOn")
    sender : str      = Field(default_factory=socket.gethostname, alias="Sender")

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")
