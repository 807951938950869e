"""Tests for the Slurm scheduler client."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from squitolib.config import get_settings_for_testing
from squitolib.exceptions import SubmissionError, VerificationError
from squitolib.scheduler import (
    JobHandle,
    JobState,
    SlurmScheduler,
    parse_job_id,
    parse_job_state,
)
from squitolib.stage_config import StageResources
from squitolib.task_graph import LogPaths, Task


@pytest.fixture
def task():
    return Task(
        id="trim:sampleA",
        stage="trim",
        program=Path("bin/01_trimming.sh"),
        args=("in_R1.fastq.gz", "in_R2.fastq.gz", "out_R1.fastq", "out_R2.fastq", "sampleA", "logs/01_trimming"),
        resources=StageResources(partition="short", time="04:00:00", nodes=1, cpus_per_task=8, mem="16G"),
        log_paths=LogPaths.under(Path("logs/01_trimming"), "trim_sampleA"),
    )


class TestParsing:
    @pytest.mark.parametrize(
        "output, expected",
        [
            ("12345\n", "12345"),
            ("12345;cluster-a\n", "12345"),
            ("\n  678  \n", "678"),
            ("", None),
            (";cluster\n", None),
        ],
    )
    def test_parse_job_id(self, output, expected):
        assert parse_job_id(output) == expected

    def test_parse_job_state(self):
        output = "JobId=42 JobName=squito_merge\n   JobState=RUNNING Reason=None Dependency=(null)\n"
        assert parse_job_state(output) == JobState.RUNNING

    def test_parse_job_state_unknown(self):
        assert parse_job_state("JobState=WEIRD") == JobState.UNKNOWN
        assert parse_job_state("no state here") == JobState.UNKNOWN


class TestCommandConstruction:
    def test_dependency_expression(self):
        scheduler = SlurmScheduler()
        assert scheduler.dependency_expression([]) is None
        assert scheduler.dependency_expression(["1"]) == "afterok:1"
        assert scheduler.dependency_expression(["1", "2", "3"]) == "afterok:1:2:3"

    def test_submit_command_without_dependencies(self, task):
        command = SlurmScheduler().build_submit_command(task)
        assert command == [
            "sbatch",
            "--parsable",
            "--job-name=squito_trim_sampleA",
            "--partition=short",
            "--time=04:00:00",
            "--nodes=1",
            "--cpus-per-task=8",
            "--mem=16G",
            "--output=logs/01_trimming/trim_sampleA_%j.out",
            "--error=logs/01_trimming/trim_sampleA_%j.err",
            "bin/01_trimming.sh",
            "in_R1.fastq.gz",
            "in_R2.fastq.gz",
            "out_R1.fastq",
            "out_R2.fastq",
            "sampleA",
            "logs/01_trimming",
        ]

    def test_submit_command_with_dependencies(self, task):
        command = SlurmScheduler(sbatch_bin="/opt/slurm/bin/sbatch").build_submit_command(task, ["10", "11"])
        assert command[0] == "/opt/slurm/bin/sbatch"
        assert "--dependency=afterok:10:11" in command
        assert command.index("--dependency=afterok:10:11") < command.index("bin/01_trimming.sh")

    def test_empty_option_is_kept_as_argument(self, task):
        """Stage scripts read positional arguments, so empty ones must survive."""
        viz = Task(
            id="visualize",
            stage="visualize",
            program=Path("bin/05_visualize.sh"),
            args=("busco", "rnaquast", "viz", "", "", "logs"),
            resources=StageResources(),
            log_paths=LogPaths.under(Path("logs"), "visualize"),
        )
        command = SlurmScheduler().build_submit_command(viz)
        assert command[-6:] == ["busco", "rnaquast", "viz", "", "", "logs"]

    def test_cancel_command(self):
        assert SlurmScheduler(scancel_bin="scancel").cancel_command("99") == ["scancel", "99"]

    def test_only_afterok_supported(self):
        with pytest.raises(ValueError):
            SlurmScheduler(dependency_type="afterany")

    def test_from_settings(self):
        settings = get_settings_for_testing(sbatch_bin="my-sbatch", verify_delay_seconds=0)
        scheduler = SlurmScheduler.from_settings(settings, dry_run=True)
        assert scheduler.sbatch_bin == "my-sbatch"
        assert scheduler.verify_delay_seconds == 0
        assert scheduler.dry_run is True


class TestSubmit:
    """Tests for SlurmScheduler.submit()."""

    def test_success(self, scheduler, fake_slurm, task):
        handle = scheduler.submit(task)
        assert handle == JobHandle(task_id="trim:sampleA", scheduler_job_id="1000")
        assert fake_slurm.submissions[0][0] == "sbatch"

    def test_runner_called_without_shell(self, task):
        runner = MagicMock(return_value=subprocess.CompletedProcess([], 0, stdout="7\n", stderr=""))
        SlurmScheduler(runner=runner, timeout_seconds=30).submit(task)

        args, kwargs = runner.call_args
        assert isinstance(args[0], list)
        assert kwargs["capture_output"] is True
        assert kwargs["text"] is True
        assert kwargs["timeout"] == 30
        assert "shell" not in kwargs

    def test_rejected(self, scheduler, fake_slurm, task):
        fake_slurm.fail_jobs.add(task.job_name)
        with pytest.raises(SubmissionError, match="Invalid partition") as exc_info:
            scheduler.submit(task)
        assert exc_info.value.task_id == "trim:sampleA"
        assert exc_info.value.details["returncode"] == 1

    def test_no_job_id(self, task):
        runner = MagicMock(return_value=subprocess.CompletedProcess([], 0, stdout="\n", stderr=""))
        with pytest.raises(SubmissionError, match="no job id"):
            SlurmScheduler(runner=runner).submit(task)

    def test_binary_missing(self, task):
        runner = MagicMock(side_effect=FileNotFoundError("sbatch"))
        with pytest.raises(SubmissionError, match="Could not run"):
            SlurmScheduler(runner=runner).submit(task)

    def test_timeout(self, task):
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(cmd="sbatch", timeout=60))
        with pytest.raises(SubmissionError, match="timed out"):
            SlurmScheduler(runner=runner).submit(task)

    def test_dry_run(self, task):
        runner = MagicMock()
        scheduler = SlurmScheduler(runner=runner, dry_run=True)

        first = scheduler.submit(task)
        second = scheduler.submit(task, [first.scheduler_job_id])

        assert first.scheduler_job_id == "dryrun-1"
        assert second.scheduler_job_id == "dryrun-2"
        runner.assert_not_called()


class TestVerify:
    """Tests for post-submission verification."""

    def test_pending_job_passes(self, scheduler, sleeps):
        status = scheduler.verify(JobHandle("merge", "1000"))
        assert status.exists
        assert status.state == JobState.PENDING
        assert sleeps == [2.0]

    def test_missing_job(self, scheduler, fake_slurm):
        fake_slurm.missing_jobs.add("1000")
        with pytest.raises(VerificationError, match="does not exist") as exc_info:
            scheduler.verify(JobHandle("merge", "1000"))
        assert exc_info.value.job_id == "1000"

    @pytest.mark.parametrize("state", ["FAILED", "CANCELLED", "OUT_OF_MEMORY"])
    def test_failed_states(self, scheduler, fake_slurm, state):
        fake_slurm.job_states["1000"] = state
        with pytest.raises(VerificationError) as exc_info:
            scheduler.verify(JobHandle("merge", "1000"))
        assert exc_info.value.state == state

    def test_query_uses_scontrol(self, scheduler, fake_slurm):
        scheduler.query("55")
        assert fake_slurm.calls[-1] == ["scontrol", "show", "job", "55"]

    def test_query_error_means_missing(self, task):
        runner = MagicMock(side_effect=OSError("boom"))
        status = SlurmScheduler(runner=runner).query("1")
        assert status.exists is False

    def test_dry_run_skips_delay(self, sleeps):
        runner = MagicMock()
        scheduler = SlurmScheduler(runner=runner, sleeper=sleeps.append, dry_run=True)
        assert scheduler.verify(JobHandle("merge", "dryrun-1")).exists
        assert sleeps == []
        runner.assert_not_called()
