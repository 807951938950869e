"""
cellsquito - Slurm orchestration for the cellSquito RNA-seq pipeline.

This package provides:
- Paired-end read discovery
- Result and log directory provisioning
- The trim/merge/assembly/quality/visualize task graph
- Slurm submission with afterok dependency chaining and a cancel script
"""

__version__ = "0.3.0"

from squitolib.discovery import Sample, StagePattern, discover
from squitolib.exceptions import (
    ConfigError,
    InputError,
    PipelineError,
    ProvisionError,
    SquitoError,
    SubmissionError,
    VerificationError,
)
from squitolib.layout import DirectoryLayout, provision
from squitolib.pipeline import PipelineDriver, RunSummary, run_pipeline
from squitolib.scheduler import JobHandle, SlurmScheduler
from squitolib.task_graph import Task, TaskGraph, TaskGraphBuilder

__all__ = [
    "__version__",
    "Sample",
    "StagePattern",
    "discover",
    "DirectoryLayout",
    "provision",
    "Task",
    "TaskGraph",
    "TaskGraphBuilder",
    "JobHandle",
    "SlurmScheduler",
    "PipelineDriver",
    "RunSummary",
    "run_pipeline",
    "SquitoError",
    "InputError",
    "ConfigError",
    "ProvisionError",
    "SubmissionError",
    "VerificationError",
    "PipelineError",
]
