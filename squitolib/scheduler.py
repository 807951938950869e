"""Slurm scheduler client.

Translates a Task into an ``sbatch`` invocation, submits it, and checks with
``scontrol`` that the job registered. Dependencies are always expressed as
``afterok:<id>:<id>...``: a job starts only if every listed job succeeded.
"""

from __future__ import annotations

import itertools
import logging
import re
import shlex
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from squitolib.exceptions import SubmissionError, VerificationError
from squitolib.task_graph import Task

LOGGER = logging.getLogger("squito.scheduler")

Runner = Callable[..., subprocess.CompletedProcess]

JOB_STATE_PATTERN = re.compile(r"\bJobState=(\S+)")
DEPENDENCY_SEPARATOR = ":"


class JobState(str, Enum):
    """Slurm job states as reported by ``scontrol``."""

    PENDING = "PENDING"
    CONFIGURING = "CONFIGURING"
    RUNNING = "RUNNING"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    SUSPENDED = "SUSPENDED"
    PREEMPTED = "PREEMPTED"
    REQUEUED = "REQUEUED"
    FAILED = "FAILED"
    BOOT_FAIL = "BOOT_FAIL"
    NODE_FAIL = "NODE_FAIL"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "JobState":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN


# A job already in one of these states right after submission will never
# satisfy an afterok dependency.
FAILED_STATES = {
    JobState.FAILED,
    JobState.BOOT_FAIL,
    JobState.NODE_FAIL,
    JobState.OUT_OF_MEMORY,
    JobState.CANCELLED,
}


@dataclass(frozen=True)
class JobHandle:
    """A submitted task and the scheduler's id for it."""

    task_id: str
    scheduler_job_id: str


@dataclass(frozen=True)
class JobStatus:
    job_id: str
    exists: bool
    state: JobState = JobState.UNKNOWN


def parse_job_id(output: str) -> Optional[str]:
    """Extract the job id from ``sbatch --parsable`` output (``id[;cluster]``)."""
    for line in output.strip().splitlines():
        line = line.strip()
        if not line:
            continue
        job_id = line.split(";", 1)[0].strip()
        return job_id or None
    return None


def parse_job_state(output: str) -> JobState:
    match = JOB_STATE_PATTERN.search(output)
    return JobState.parse(match.group(1) if match else None)


class SlurmScheduler:
    """Submits tasks with ``sbatch`` and inspects them with ``scontrol``."""

    def __init__(
        self,
        sbatch_bin: str = "sbatch",
        scontrol_bin: str = "scontrol",
        scancel_bin: str = "scancel",
        dependency_type: str = "afterok",
        verify_delay_seconds: float = 2.0,
        timeout_seconds: int = 60,
        dry_run: bool = False,
        runner: Optional[Runner] = None,
        sleeper: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the scheduler client.

        Args:
            sbatch_bin: Submission binary.
            scontrol_bin: Job query binary.
            scancel_bin: Cancel binary, used for the generated cancel script.
            dependency_type: Dependency join; only ``afterok`` is supported.
            verify_delay_seconds: Wait before checking a new job is registered.
            timeout_seconds: Timeout for each scheduler command.
            dry_run: Log commands instead of running them and return
                synthetic job ids.
            runner: ``subprocess.run`` replacement, for tests.
            sleeper: ``time.sleep`` replacement, for tests.
        """
        if dependency_type != "afterok":
            raise ValueError(f"Unsupported dependency type: {dependency_type}")
        self.sbatch_bin = sbatch_bin
        self.scontrol_bin = scontrol_bin
        self.scancel_bin = scancel_bin
        self.dependency_type = dependency_type
        self.verify_delay_seconds = verify_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run
        self._runner: Runner = runner or subprocess.run
        self._sleep = sleeper or time.sleep
        self._dry_run_ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings, dry_run: bool = False, **kwargs) -> "SlurmScheduler":
        return cls(
            sbatch_bin=settings.sbatch_bin,
            scontrol_bin=settings.scontrol_bin,
            scancel_bin=settings.scancel_bin,
            dependency_type=settings.dependency_type,
            verify_delay_seconds=settings.verify_delay_seconds,
            timeout_seconds=settings.command_timeout_seconds,
            dry_run=dry_run,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------
    def dependency_expression(self, job_ids: Sequence[str]) -> Optional[str]:
        """``afterok:1:2:3`` for the given ids, or None when there are none."""
        if not job_ids:
            return None
        return DEPENDENCY_SEPARATOR.join([self.dependency_type, *job_ids])

    def build_submit_command(self, task: Task, dependency_job_ids: Sequence[str] = ()) -> List[str]:
        res = task.resources
        command = [
            self.sbatch_bin,
            "--parsable",
            f"--job-name={task.job_name}",
            f"--partition={res.partition}",
            f"--time={res.time}",
            f"--nodes={res.nodes}",
            f"--cpus-per-task={res.cpus_per_task}",
            f"--mem={res.mem}",
        ]
        dependency = self.dependency_expression(dependency_job_ids)
        if dependency:
            command.append(f"--dependency={dependency}")
        command += [
            f"--output={task.log_paths.stdout}",
            f"--error={task.log_paths.stderr}",
        ]
        command += task.command
        return command

    def cancel_command(self, job_id: str) -> List[str]:
        return [self.scancel_bin, job_id]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _run(self, command: Sequence[str]) -> subprocess.CompletedProcess:
        cmd_display = " ".join(shlex.quote(part) for part in command)
        LOGGER.debug("Executing command: %s", cmd_display)
        return self._runner(
            list(command),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
        )

    def submit(self, task: Task, dependency_job_ids: Sequence[str] = ()) -> JobHandle:
        """Submit ``task``, waiting on ``dependency_job_ids``.

        Raises:
            SubmissionError: sbatch failed, could not run, or printed no job id.
        """
        command = self.build_submit_command(task, dependency_job_ids)

        if self.dry_run:
            job_id = f"dryrun-{next(self._dry_run_ids)}"
            LOGGER.info("[DRY-RUN] %s -> %s", " ".join(shlex.quote(p) for p in command), job_id)
            return JobHandle(task_id=task.id, scheduler_job_id=job_id)

        try:
            result = self._run(command)
        except subprocess.TimeoutExpired as e:
            raise SubmissionError(
                f"Submission of {task.id} timed out after {self.timeout_seconds}s",
                task_id=task.id,
            ) from e
        except OSError as e:
            raise SubmissionError(
                f"Could not run {self.sbatch_bin} for {task.id}: {e}",
                task_id=task.id,
            ) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise SubmissionError(
                f"Failed to submit {task.id} (exit {result.returncode}): {stderr or 'no error output'}",
                task_id=task.id,
                details={"returncode": result.returncode, "stderr": stderr},
            )

        job_id = parse_job_id(result.stdout or "")
        if not job_id:
            raise SubmissionError(
                f"Scheduler returned no job id for {task.id}",
                task_id=task.id,
                details={"stdout": result.stdout},
            )

        LOGGER.info("Submitted %s as job %s", task.id, job_id)
        return JobHandle(task_id=task.id, scheduler_job_id=job_id)

    def query(self, job_id: str) -> JobStatus:
        """Look up ``job_id``; a failed lookup is reported as not existing."""
        if self.dry_run:
            return JobStatus(job_id=job_id, exists=True, state=JobState.PENDING)

        try:
            result = self._run([self.scontrol_bin, "show", "job", job_id])
        except (subprocess.TimeoutExpired, OSError) as e:
            LOGGER.warning("Could not query job %s: %s", job_id, e)
            return JobStatus(job_id=job_id, exists=False)

        if result.returncode != 0:
            LOGGER.debug("scontrol show job %s failed: %s", job_id, (result.stderr or "").strip())
            return JobStatus(job_id=job_id, exists=False)
        return JobStatus(job_id=job_id, exists=True, state=parse_job_state(result.stdout or ""))

    def verify(self, handle: JobHandle) -> JobStatus:
        """Check that a freshly submitted job is registered and not failed.

        Raises:
            VerificationError: The job is unknown to the scheduler or failed.
        """
        if not self.dry_run and self.verify_delay_seconds > 0:
            self._sleep(self.verify_delay_seconds)

        status = self.query(handle.scheduler_job_id)
        if not status.exists:
            raise VerificationError(
                f"Job {handle.scheduler_job_id} ({handle.task_id}) does not exist or was cancelled",
                job_id=handle.scheduler_job_id,
            )
        if status.state in FAILED_STATES:
            raise VerificationError(
                f"Job {handle.scheduler_job_id} ({handle.task_id}) is in state {status.state.value}",
                job_id=handle.scheduler_job_id,
                state=status.state.value,
            )
        LOGGER.debug("Job %s (%s) is %s", handle.scheduler_job_id, handle.task_id, status.state.value)
        return status
