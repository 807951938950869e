"""Pipeline driver: submits the task graph and records the run.

The driver walks the graph in dependency order and submits every task
exactly once. Failures are split into two channels:

- required tasks (trim, merge, assembly, main quality, visualize): a failed
  submission aborts the run with PipelineError;
- optional tasks (the draft quality branch): a failed submission is recorded
  as a warning and the task is dropped from its dependents' dependency lists.

Verification failures are always warnings. Whatever happens, a cancel
script is written for every job submitted so far.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from squitolib.config import Settings, get_settings
from squitolib.discovery import DEFAULT_PATTERNS, Sample, StagePattern, discover
from squitolib.exceptions import PipelineError, ProvisionError, SubmissionError, VerificationError
from squitolib.layout import DirectoryLayout, provision, write_manifests
from squitolib.scheduler import JobHandle, SlurmScheduler
from squitolib.stage_config import StageConfig
from squitolib.task_graph import GraphOptions, Task, TaskGraph, TaskGraphBuilder

LOGGER = logging.getLogger("squito.pipeline")


@dataclass
class RunSummary:
    """Outcome of a successful submission run."""

    jobs: Dict[str, str]
    failed_optional: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancel_script: Optional[Path] = None
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobs": dict(self.jobs),
            "failed_optional": list(self.failed_optional),
            "warnings": list(self.warnings),
            "cancel_script": str(self.cancel_script) if self.cancel_script else None,
            "dry_run": self.dry_run,
        }


@dataclass
class PipelineRun:
    """Everything one orchestration invocation produced; never persisted."""

    graph: TaskGraph
    samples: List[Sample] = field(default_factory=list)
    layout: Optional[DirectoryLayout] = None
    handles: "OrderedDict[str, JobHandle]" = field(default_factory=OrderedDict)
    failed_optional: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancel_script: Optional[Path] = None

    def warn(self, message: str) -> None:
        LOGGER.warning(message)
        self.warnings.append(message)

    @property
    def job_ids(self) -> List[str]:
        return [h.scheduler_job_id for h in self.handles.values()]

    def summary(self, dry_run: bool = False) -> RunSummary:
        return RunSummary(
            jobs={task_id: h.scheduler_job_id for task_id, h in self.handles.items()},
            failed_optional=list(self.failed_optional),
            warnings=list(self.warnings),
            cancel_script=self.cancel_script,
            dry_run=dry_run,
        )


def write_cancel_script(path: Path, job_ids: Sequence[str], scancel_bin: str = "scancel") -> Path:
    """Write an executable bash script cancelling every job in ``job_ids``.

    The script is rewritten from scratch each time.
    """
    lines = [
        "#!/bin/bash",
        "# Script to cancel all pipeline jobs",
        "echo 'Cancelling all pipeline jobs...'",
    ]
    lines += [f"{scancel_bin} {job_id}" for job_id in job_ids if job_id]
    lines.append("echo 'All jobs cancelled.'")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        path.chmod(0o755)
    except OSError as e:
        raise ProvisionError(
            f"Failed to write cancel script {path}: {e}",
            details={"path": str(path)},
        ) from e
    LOGGER.info("Wrote cancel script for %d jobs: %s", len(job_ids), path)
    return path


def write_summary(path: Path, summary: RunSummary) -> Path:
    """Write the run summary as JSON."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(summary.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise ProvisionError(f"Failed to write summary {path}: {e}", details={"path": str(path)}) from e
    return path


class PipelineDriver:
    """Submits a TaskGraph through a scheduler client."""

    def __init__(
        self,
        scheduler: SlurmScheduler,
        cancel_script_path: Optional[Path] = None,
        verify: bool = True,
    ):
        """Initialize the driver.

        Args:
            scheduler: Client used for submission and verification.
            cancel_script_path: Where to write the cancel script; None skips it.
            verify: Check each job with the scheduler right after submission.
        """
        self.scheduler = scheduler
        self.cancel_script_path = cancel_script_path
        self.verify = verify

    def _dependency_job_ids(self, run: PipelineRun, task: Task) -> List[str]:
        job_ids: List[str] = []
        for dep_id in run.graph.tasks:
            if dep_id not in task.depends_on:
                continue
            if dep_id in run.failed_optional:
                run.warn(f"Excluding failed optional task {dep_id} from {task.id} dependencies")
                continue
            handle = run.handles.get(dep_id)
            if handle is None:
                raise PipelineError(
                    f"Dependency {dep_id} of {task.id} was never submitted",
                    task_id=task.id,
                    run=run,
                )
            job_ids.append(handle.scheduler_job_id)
        return job_ids

    def _submit_task(self, run: PipelineRun, task: Task) -> None:
        dependency_ids = self._dependency_job_ids(run, task)
        failed_deps = task.depends_on.intersection(run.failed_optional)
        if failed_deps:
            task = task.without_outputs_of(failed_deps)
        LOGGER.info(
            "Submitting %s%s",
            task.id,
            f" with dependency {self.scheduler.dependency_expression(dependency_ids)}" if dependency_ids else "",
        )
        try:
            handle = self.scheduler.submit(task, dependency_ids)
        except SubmissionError as e:
            if task.optional:
                run.failed_optional.append(task.id)
                run.warn(f"Optional task {task.id} was not submitted: {e.message}")
                return
            raise PipelineError(
                f"Failed to submit {task.stage} task {task.id}: {e.message}",
                task_id=task.id,
                run=run,
                details={"stage": task.stage},
            ) from e

        run.handles[task.id] = handle

        if not self.verify:
            return
        try:
            self.scheduler.verify(handle)
        except VerificationError as e:
            # The job may simply not be visible yet
            run.warn(f"Job verification failed for {task.id} job {handle.scheduler_job_id}: {e.message}")

    def _write_cancel_script(self, run: PipelineRun) -> None:
        if self.cancel_script_path is None:
            return
        run.cancel_script = write_cancel_script(
            self.cancel_script_path, run.job_ids, self.scheduler.scancel_bin
        )

    def run(
        self,
        graph: TaskGraph,
        samples: Sequence[Sample] = (),
        layout: Optional[DirectoryLayout] = None,
    ) -> RunSummary:
        """Submit every task in ``graph``.

        Raises:
            PipelineError: A required task could not be submitted. The cancel
                script still covers every job submitted before the failure,
                and ``error.run`` holds the partial run.
        """
        run = PipelineRun(graph=graph, samples=list(samples), layout=layout)
        try:
            for task in graph.topological_order():
                self._submit_task(run, task)
        except PipelineError as e:
            LOGGER.error("%s", e.message)
            try:
                self._write_cancel_script(run)
            except ProvisionError as write_error:
                LOGGER.error("Could not write cancel script after failure: %s", write_error.message)
            e.run = run
            raise

        self._write_cancel_script(run)
        LOGGER.info("Submitted %d jobs (%d warnings)", len(run.handles), len(run.warnings))
        return run.summary(dry_run=self.scheduler.dry_run)


def plan_pipeline(
    raw_reads_dir: Path,
    result_base: Path,
    logs_base: Path,
    *,
    draft_transcriptome: Optional[Path] = None,
    settings: Optional[Settings] = None,
    stage_config: Optional[StageConfig] = None,
    patterns: Sequence[StagePattern] = DEFAULT_PATTERNS,
) -> PipelineRun:
    """Discover inputs and build the task graph without touching the scheduler or disk."""
    settings = settings or get_settings()
    samples = discover(raw_reads_dir, patterns)
    stage_config = stage_config or StageConfig.load(settings.stage_config_path)
    layout = DirectoryLayout.resolve(result_base, logs_base)
    graph = TaskGraphBuilder(
        stage_config,
        scripts_dir=settings.scripts_dir,
        busco_downloads=settings.busco_downloads,
    ).build(samples, layout, GraphOptions(draft_transcriptome_path=draft_transcriptome))
    return PipelineRun(graph=graph, samples=samples, layout=layout)


def run_pipeline(
    raw_reads_dir: Path,
    result_base: Path,
    logs_base: Path,
    *,
    draft_transcriptome: Optional[Path] = None,
    settings: Optional[Settings] = None,
    stage_config: Optional[StageConfig] = None,
    scheduler: Optional[SlurmScheduler] = None,
    patterns: Sequence[StagePattern] = DEFAULT_PATTERNS,
    dry_run: bool = False,
) -> RunSummary:
    """Discover, provision, build and submit the whole pipeline.

    Input and configuration errors are raised before anything is submitted.
    A dry run provisions directories and manifests but writes no cancel
    script and runs no scheduler command.

    Raises:
        ValueError: ``dry_run`` was requested with a scheduler that submits.
    """
    if dry_run and scheduler is not None and not scheduler.dry_run:
        raise ValueError("dry_run=True needs a scheduler created with dry_run=True")
    settings = settings or get_settings()
    planned = plan_pipeline(
        raw_reads_dir,
        result_base,
        logs_base,
        draft_transcriptome=draft_transcriptome,
        settings=settings,
        stage_config=stage_config,
        patterns=patterns,
    )
    layout = provision(result_base, logs_base)
    write_manifests(layout, planned.graph.trimmed_r1, planned.graph.trimmed_r2)

    scheduler = scheduler or SlurmScheduler.from_settings(settings, dry_run=dry_run)
    driver = PipelineDriver(
        scheduler,
        cancel_script_path=None if scheduler.dry_run else layout.cancel_script,
    )
    summary = driver.run(planned.graph, samples=planned.samples, layout=layout)

    if not summary.dry_run:
        timestamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        write_summary(layout.summary_logs / f"submission_{timestamp}.json", summary)
    return summary
