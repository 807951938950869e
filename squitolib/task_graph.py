"""Task graph for one pipeline run.

The pipeline is a fixed DAG::

    trim:<sample> ... ──► merge ──► assembly ──┬──► quality-busco ────┐
                                               └──► quality-rnaquast ─┤
                                    draft-busco (optional) ───────────┼──► visualize
                                    draft-rnaquast (optional) ────────┘

The draft branch only exists when a draft transcriptome file is supplied.
Tasks are added in dependency order and ``TaskGraph.add`` rejects any
dependency on a task that has not been added yet, so the graph is acyclic
by construction.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from squitolib.discovery import Sample
from squitolib.layout import DirectoryLayout
from squitolib.stage_config import (
    ASSEMBLY,
    BUSCO,
    MERGE,
    RNAQUAST,
    TRIM,
    VISUALIZE,
    StageConfig,
    StageResources,
)

LOGGER = logging.getLogger("squito.task_graph")

MERGE_TASK = "merge"
ASSEMBLY_TASK = "assembly"
QUALITY_BUSCO_TASK = "quality-busco"
QUALITY_RNAQUAST_TASK = "quality-rnaquast"
DRAFT_BUSCO_TASK = "draft-busco"
DRAFT_RNAQUAST_TASK = "draft-rnaquast"
VISUALIZE_TASK = "visualize"

# Stage wrapper scripts, relative to the scripts directory
STAGE_SCRIPTS = {
    TRIM: "01_trimming.sh",
    MERGE: "02_merge.sh",
    ASSEMBLY: "03_assembly.sh",
    BUSCO: "04_busco.sh",
    RNAQUAST: "04_rnaquast.sh",
    VISUALIZE: "05_visualize.sh",
}

ASSEMBLY_OUTPUT_NAME = "transcripts.fasta"
NEW_ASSEMBLY_LABEL = "new_assembly"
DRAFT_ASSEMBLY_LABEL = "draft_assembly"


def trim_task_id(sample_name: str) -> str:
    return f"trim:{sample_name}"


@dataclass(frozen=True)
class LogPaths:
    """Scheduler stdout/stderr paths; ``%j`` expands to the job id."""

    stdout: Path
    stderr: Path

    @classmethod
    def under(cls, log_dir: Path, prefix: str) -> "LogPaths":
        return cls(stdout=log_dir / f"{prefix}_%j.out", stderr=log_dir / f"{prefix}_%j.err")


@dataclass(frozen=True)
class Task:
    """A single batch job: one stage program invocation plus its resources."""

    id: str
    stage: str
    program: Path
    args: Tuple[str, ...]
    resources: StageResources
    log_paths: LogPaths
    depends_on: FrozenSet[str] = frozenset()
    optional: bool = False
    # (dependency id, index into args) pairs; blanked when that dependency fails
    dependency_args: Tuple[Tuple[str, int], ...] = ()

    def without_outputs_of(self, failed: Iterable[str]) -> "Task":
        """Copy of this task with the arguments fed by ``failed`` dependencies blanked."""
        failed = set(failed)
        blank = {index for dep_id, index in self.dependency_args if dep_id in failed}
        if not blank:
            return self
        args = tuple("" if i in blank else arg for i, arg in enumerate(self.args))
        return replace(self, args=args)

    @property
    def command(self) -> List[str]:
        return [str(self.program), *self.args]

    @property
    def job_name(self) -> str:
        return "squito_" + self.id.replace(":", "_")


@dataclass
class GraphOptions:
    draft_transcriptome_path: Optional[Path] = None


@dataclass
class TaskGraph:
    """Tasks keyed by id, in insertion (build) order."""

    tasks: "OrderedDict[str, Task]" = field(default_factory=OrderedDict)
    trimmed_r1: List[Path] = field(default_factory=list)
    trimmed_r2: List[Path] = field(default_factory=list)

    def add(self, task: Task) -> Task:
        if task.id in self.tasks:
            raise ValueError(f"Duplicate task id: {task.id}")
        missing = sorted(dep for dep in task.depends_on if dep not in self.tasks)
        if missing:
            raise ValueError(f"Task {task.id} depends on unknown tasks: {', '.join(missing)}")
        self.tasks[task.id] = task
        return task

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.tasks

    def __len__(self) -> int:
        return len(self.tasks)

    def __getitem__(self, task_id: str) -> Task:
        return self.tasks[task_id]

    def __iter__(self):
        return iter(self.tasks.values())

    def dependencies_of(self, task_id: str) -> FrozenSet[str]:
        return self.tasks[task_id].depends_on

    def dependents_of(self, task_id: str) -> List[str]:
        return [t.id for t in self.tasks.values() if task_id in t.depends_on]

    def edges(self) -> List[Tuple[str, str]]:
        """(dependency, dependent) pairs."""
        return [(dep, t.id) for t in self.tasks.values() for dep in sorted(t.depends_on)]

    @property
    def required_tasks(self) -> List[Task]:
        return [t for t in self.tasks.values() if not t.optional]

    @property
    def optional_tasks(self) -> List[Task]:
        return [t for t in self.tasks.values() if t.optional]

    def topological_order(self) -> List[Task]:
        """Dependency order; among ready tasks the earliest added goes first."""
        pending = list(self.tasks.values())
        placed: set = set()
        order: List[Task] = []
        while pending:
            for task in pending:
                if task.depends_on <= placed:
                    break
            else:
                raise ValueError(f"Cycle detected among tasks: {', '.join(t.id for t in pending)}")
            pending.remove(task)
            placed.add(task.id)
            order.append(task)
        return order


class TaskGraphBuilder:
    """Builds the pipeline DAG from discovered samples and stage resources."""

    def __init__(
        self,
        stage_config: StageConfig,
        scripts_dir: Path = Path("bin"),
        busco_downloads: str = "./busco_downloads",
    ):
        self.stage_config = stage_config
        self.scripts_dir = Path(scripts_dir)
        self.busco_downloads = busco_downloads

    def _script(self, stage: str) -> Path:
        return self.scripts_dir / STAGE_SCRIPTS[stage]

    def _task(
        self,
        task_id: str,
        stage: str,
        args: Sequence[object],
        log_paths: LogPaths,
        depends_on: Iterable[str] = (),
        optional: bool = False,
        dependency_args: Sequence[Tuple[str, int]] = (),
    ) -> Task:
        return Task(
            id=task_id,
            stage=stage,
            program=self._script(stage),
            args=tuple(str(a) for a in args),
            resources=self.stage_config.for_stage(stage),
            log_paths=log_paths,
            depends_on=frozenset(depends_on),
            optional=optional,
            dependency_args=tuple(dependency_args),
        )

    @staticmethod
    def _draft_path(options: GraphOptions) -> Optional[Path]:
        draft = options.draft_transcriptome_path
        if not draft:
            return None
        draft = Path(draft)
        if not draft.is_file():
            LOGGER.warning("Draft transcriptome %s not found; skipping draft quality branch", draft)
            return None
        return draft

    def build(
        self,
        samples: Sequence[Sample],
        layout: DirectoryLayout,
        options: Optional[GraphOptions] = None,
    ) -> TaskGraph:
        if not samples:
            raise ValueError("Cannot build a task graph without samples")
        options = options or GraphOptions()
        graph = TaskGraph()

        # Trimming, one task per sample
        trim_ids: List[str] = []
        for sample in samples:
            trim_r1 = layout.trimmed_dir / f"{sample.name}_R1_trimmed.fastq"
            trim_r2 = layout.trimmed_dir / f"{sample.name}_R2_trimmed.fastq"
            graph.trimmed_r1.append(trim_r1)
            graph.trimmed_r2.append(trim_r2)
            task = graph.add(self._task(
                trim_task_id(sample.name),
                TRIM,
                [sample.read1_path, sample.read2_path, trim_r1, trim_r2, sample.name, layout.trim_logs],
                LogPaths.under(layout.trim_logs, f"trim_{sample.name}"),
            ))
            trim_ids.append(task.id)

        # Merge waits for every trim task
        merged_r1 = layout.merged_dir / "merged_R1.fastq"
        merged_r2 = layout.merged_dir / "merged_R2.fastq"
        graph.add(self._task(
            MERGE_TASK,
            MERGE,
            [layout.r1_manifest, layout.r2_manifest, merged_r1, merged_r2, layout.merge_logs],
            LogPaths.under(layout.merge_logs, "merge"),
            depends_on=trim_ids,
        ))

        graph.add(self._task(
            ASSEMBLY_TASK,
            ASSEMBLY,
            [merged_r1, merged_r2, layout.assembly_dir,
             self.stage_config.for_stage(ASSEMBLY).opts, layout.assembly_logs],
            LogPaths.under(layout.assembly_logs, "assembly"),
            depends_on=[MERGE_TASK],
        ))

        assembly_fasta = layout.assembly_dir / ASSEMBLY_OUTPUT_NAME
        rnaquast_opts = self.stage_config.for_stage(RNAQUAST).opts
        graph.add(self._task(
            QUALITY_BUSCO_TASK,
            BUSCO,
            [assembly_fasta, layout.busco_dir, self.busco_downloads, NEW_ASSEMBLY_LABEL, layout.busco_logs],
            LogPaths.under(layout.busco_logs, "busco"),
            depends_on=[ASSEMBLY_TASK],
        ))
        graph.add(self._task(
            QUALITY_RNAQUAST_TASK,
            RNAQUAST,
            [assembly_fasta, layout.rnaquast_dir, merged_r1, merged_r2, rnaquast_opts, layout.rnaquast_logs],
            LogPaths.under(layout.rnaquast_logs, "rnaquast"),
            depends_on=[ASSEMBLY_TASK],
        ))

        viz_deps = [QUALITY_BUSCO_TASK, QUALITY_RNAQUAST_TASK]
        draft_busco_arg = ""
        draft_rnaquast_arg = ""
        viz_draft_args: List[Tuple[str, int]] = []

        draft = self._draft_path(options)
        if draft is not None:
            LOGGER.info("Found draft transcriptome: %s", draft)
            graph.add(self._task(
                DRAFT_BUSCO_TASK,
                BUSCO,
                [draft, layout.draft_busco_dir, self.busco_downloads, DRAFT_ASSEMBLY_LABEL, layout.busco_logs],
                LogPaths.under(layout.busco_logs, "draft_busco"),
                optional=True,
            ))
            graph.add(self._task(
                DRAFT_RNAQUAST_TASK,
                RNAQUAST,
                [draft, layout.draft_rnaquast_dir, merged_r1, merged_r2, rnaquast_opts, layout.rnaquast_logs],
                LogPaths.under(layout.rnaquast_logs, "draft_rnaquast"),
                optional=True,
            ))
            viz_deps += [DRAFT_BUSCO_TASK, DRAFT_RNAQUAST_TASK]
            draft_busco_arg = str(layout.draft_busco_dir)
            draft_rnaquast_arg = str(layout.draft_rnaquast_dir)
            viz_draft_args = [(DRAFT_BUSCO_TASK, 3), (DRAFT_RNAQUAST_TASK, 4)]

        graph.add(self._task(
            VISUALIZE_TASK,
            VISUALIZE,
            [layout.busco_dir, layout.rnaquast_dir, layout.viz_dir,
             draft_busco_arg, draft_rnaquast_arg, layout.viz_logs],
            LogPaths.under(layout.viz_logs, "visualize"),
            depends_on=viz_deps,
            dependency_args=viz_draft_args,
        ))

        LOGGER.info(
            "Built task graph: %d tasks (%d samples, draft branch %s)",
            len(graph), len(samples), "enabled" if draft is not None else "disabled",
        )
        return graph
