# services/condor_service.py
import asyncio
import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from condor_launcher.services.config_service import CondorConfig

logger = logging.getLogger(__name__)

# condor_submit prints e.g. "1 job(s) submitted to cluster 4711."
_JOB_ID_PATTERN = re.compile(r"submitted to cluster (\d+)")

HELD_JOB_STATUS = 5
HELD_JOBS_CONSTRAINT = f"JobStatus == {HELD_JOB_STATUS} && IpcUuid =!= undefined"


class CondorError(Exception):
    pass


class CondorExecutableNotFoundError(CondorError):
    def __init__(self, name: str, search_path: str):
        super().__init__(f"{name} not found on {search_path or 'PATH'}")
        self.name = name


class CondorCommandError(CondorError):
    def __init__(self, command: List[str], returncode: int, output: str):
        super().__init__(f"{os.path.basename(command[0])} exited with status {returncode}:\n{output}")
        self.command = command
        self.returncode = returncode
        self.output = output


class CondorJobIDNotFoundError(CondorError):
    def __init__(self, output: str):
        super().__init__(f"Could not find a Condor job ID in condor_submit output:\n{output}")
        self.output = output


@dataclass(frozen=True)
class HeldJob:
    """A job condor_q reports in the held state"""
    condor_id: str
    invocation_id: str
    username: str = ""


def extract_job_id(output: str) -> str:
    match = _JOB_ID_PATTERN.search(output)
    if not match:
        raise CondorJobIDNotFoundError(output)
    return match.group(1)


def _undefined_to_empty(value: str) -> str:
    return "" if value == "undefined" else value


class CondorService:
    """Runs the HTCondor command line tools with a constrained environment"""

    def __init__(self, config: CondorConfig):
        self.config = config

    @property
    def environment(self) -> Dict[str, str]:
        return {
            "PATH": self.config.path_env_var,
            "CONDOR_CONFIG": self.config.condor_config,
        }

    def find_executable(self, name: str) -> str:
        found = shutil.which(name, path=self.config.path_env_var or None) or shutil.which(name)
        if not found:
            raise CondorExecutableNotFoundError(name, self.config.path_env_var)
        # The child gets a different PATH, so never hand it a relative path.
        return os.path.abspath(found)

    async def _run_command(self, cmd: List[str], cwd: Optional[Path] = None) -> Tuple[int, str]:
        """Run a command and return its exit status and combined stdout/stderr"""
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd) if cwd else None,
            env=self.environment,
        )
        if self.config.command_timeout is None:
            stdout, _ = await process.communicate()
        else:
            try:
                stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.config.command_timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                raise CondorCommandError(cmd, -1, f"timed out after {self.config.command_timeout} seconds")
        return process.returncode, stdout.decode("utf-8", errors="replace")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def submit(self, submit_file: Path) -> str:
        """Submits the description file and returns the cluster id Condor assigned"""
        cmd = [self.find_executable("condor_submit"), str(submit_file)]
        returncode, output = await self._run_command(cmd, cwd=submit_file.parent)
        logger.info("Output of condor_submit:\n%s", output)
        if returncode != 0:
            raise CondorCommandError(cmd, returncode, output)

        condor_id = extract_job_id(output)
        logger.info("Extracted ID: %s", condor_id)
        return condor_id

    async def remove(self, condor_id: str) -> str:
        crm_path = self.find_executable("condor_rm")
        logger.info("condor_rm found at %s", crm_path)
        cmd = [crm_path, condor_id]
        returncode, output = await self._run_command(cmd)
        logger.info("condor_rm output for job %s:\n%s", condor_id, output)
        if returncode != 0:
            raise CondorCommandError(cmd, returncode, output)
        return output

    async def _query(self, constraint: str, attributes: List[str]) -> List[List[str]]:
        cmd = [self.find_executable("condor_q"), "-constraint", constraint, "-autoformat", *attributes]
        returncode, output = await self._run_command(cmd)
        logger.debug("condor_q output for %s:\n%s", constraint, output)
        if returncode != 0:
            raise CondorCommandError(cmd, returncode, output)

        rows = []
        for line in output.splitlines():
            parts = line.split()
            if not parts:
                continue
            if len(parts) < len(attributes):
                logger.warning("Skipping malformed condor_q line: %r", line)
                continue
            rows.append(parts)
        return rows

    async def held_jobs(self) -> List[HeldJob]:
        rows = await self._query(HELD_JOBS_CONSTRAINT, ["ClusterId", "IpcUuid", "IpcUsername"])
        return [
            HeldJob(
                condor_id=row[0],
                invocation_id=_undefined_to_empty(row[1]),
                username=_undefined_to_empty(row[2]),
            )
            for row in rows
        ]

    async def find_jobs(self, invocation_id: str) -> List[str]:
        """Returns the cluster ids of every queued job belonging to the invocation"""
        escaped = invocation_id.replace("\\", "\\\\").replace('"', '\\"')
        rows = await self._query(f'IpcUuid == "{escaped}"', ["ClusterId"])
        return [row[0] for row in rows]
