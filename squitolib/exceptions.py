"""Exception hierarchy for the cellsquito orchestrator.

Each exception carries a machine-readable error code and the process exit
code the CLI terminates with, so that every failure surfaces the same way
whether it comes from discovery, provisioning or the scheduler.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from squitolib.pipeline import PipelineRun


class SquitoError(Exception):
    """Base exception for all orchestrator errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code (e.g., "INPUT_ERROR")
        exit_code: Process exit code used by the CLI
        details: Additional error context
    """

    exit_code: int = 1
    default_code: str = "INTERNAL_ERROR"
    default_message: str = "An internal error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the JSON error format."""
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


# ========== Fatal setup errors ==========


class InputError(SquitoError):
    """Raw reads directory is missing, empty, or holds no read pairs."""

    default_code = "INPUT_ERROR"
    default_message = "Input reads could not be discovered"


class ConfigError(SquitoError):
    """Stage configuration is malformed."""

    default_code = "CONFIG_ERROR"
    default_message = "Invalid stage configuration"


class ProvisionError(SquitoError):
    """Output or log directory (or manifest file) could not be created."""

    default_code = "PROVISION_ERROR"
    default_message = "Failed to create pipeline directories"


# ========== Scheduler errors ==========


class SubmissionError(SquitoError):
    """Scheduler rejected a submission or returned no job id."""

    default_code = "SUBMISSION_ERROR"
    default_message = "Job submission failed"

    def __init__(
        self,
        message: Optional[str] = None,
        task_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.task_id = task_id
        if task_id:
            self.details.setdefault("task_id", task_id)


class VerificationError(SquitoError):
    """Submitted job is not visible to the scheduler or already failed."""

    default_code = "VERIFICATION_ERROR"
    default_message = "Job verification failed"

    def __init__(
        self,
        message: Optional[str] = None,
        job_id: Optional[str] = None,
        state: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.state = state
        if job_id:
            self.details.setdefault("job_id", job_id)
        if state:
            self.details.setdefault("state", state)


# ========== Pipeline errors ==========


class PipelineError(SquitoError):
    """A required task could not be submitted; the run was aborted.

    Attributes:
        task_id: Id of the task whose submission failed
        run: The partial run, including every handle collected before the failure
    """

    default_code = "PIPELINE_ERROR"
    default_message = "Pipeline submission aborted"

    def __init__(
        self,
        message: Optional[str] = None,
        task_id: Optional[str] = None,
        run: Optional["PipelineRun"] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.task_id = task_id
        self.run = run
        if task_id:
            self.details.setdefault("task_id", task_id)
