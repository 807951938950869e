"""Pytest configuration and shared fixtures."""

import subprocess
from pathlib import Path

import pytest

from squitolib.config import clear_settings_cache
from squitolib.layout import DirectoryLayout
from squitolib.scheduler import SlurmScheduler
from squitolib.stage_config import StageConfig


class FakeSlurm:
    """Stands in for ``subprocess.run`` against sbatch/scontrol/scancel.

    Job ids are handed out sequentially from ``start``. Submissions whose
    job name is in ``fail_jobs`` are rejected; jobs in ``missing_jobs`` are
    unknown to scontrol; ``job_states`` overrides the reported state.
    """

    def __init__(self, start: int = 1000):
        self.calls = []
        self.next_id = start
        self.fail_jobs = set()
        self.missing_jobs = set()
        self.job_states = {}

    def __call__(self, command, **kwargs):
        command = list(command)
        self.calls.append(command)
        binary = command[0]

        if binary == "sbatch":
            job_name = next(a.split("=", 1)[1] for a in command if a.startswith("--job-name="))
            if job_name in self.fail_jobs:
                return subprocess.CompletedProcess(
                    command,
                    1,
                    stdout="",
                    stderr="sbatch: error: Batch job submission failed: Invalid partition name specified\n",
                )
            job_id = str(self.next_id)
            self.next_id += 1
            return subprocess.CompletedProcess(command, 0, stdout=f"{job_id}\n", stderr="")

        if binary == "scontrol":
            job_id = command[3]
            if job_id in self.missing_jobs:
                return subprocess.CompletedProcess(
                    command, 1, stdout="", stderr="slurm_load_jobs error: Invalid job id specified\n"
                )
            state = self.job_states.get(job_id, "PENDING")
            return subprocess.CompletedProcess(
                command,
                0,
                stdout=f"JobId={job_id} JobName=squito\n   JobState={state} Reason=Dependency\n",
                stderr="",
            )

        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    @property
    def submissions(self):
        return [c for c in self.calls if c[0] == "sbatch"]

    def submission_for(self, job_name):
        """The sbatch command line for ``job_name``, or None."""
        for command in self.submissions:
            if f"--job-name={job_name}" in command:
                return command
        return None

    def dependency_of(self, job_name):
        command = self.submission_for(job_name)
        for arg in command or []:
            if arg.startswith("--dependency="):
                return arg.split("=", 1)[1]
        return None


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Never leak cached settings between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fake_slurm():
    return FakeSlurm()


@pytest.fixture
def sleeps():
    """Records requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def scheduler(fake_slurm, sleeps):
    return SlurmScheduler(runner=fake_slurm, sleeper=sleeps.append)


@pytest.fixture
def raw_reads(tmp_path) -> Path:
    """Raw reads directory with two samples using different naming conventions."""
    reads = tmp_path / "raw_reads"
    reads.mkdir()
    for name in (
        "sampleA_R1_001.fastq.gz",
        "sampleA_R2_001.fastq.gz",
        "sampleB_1.fq.gz",
        "sampleB_2.fq.gz",
    ):
        (reads / name).write_bytes(b"")
    return reads


@pytest.fixture
def draft_fasta(tmp_path) -> Path:
    draft = tmp_path / "draft" / "transcripts.fasta"
    draft.parent.mkdir()
    draft.write_text(">t1\nACGT\n")
    return draft


@pytest.fixture
def layout(tmp_path) -> DirectoryLayout:
    return DirectoryLayout.resolve(tmp_path / "results", tmp_path / "logs")


@pytest.fixture
def stage_config() -> StageConfig:
    return StageConfig()
