"""Squito CLI - cellSquito pipeline orchestration using Typer."""

import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape
from rich.table import Table

from squitolib.cli.common import configure_logging, console, fail, load_settings
from squitolib.cli.env import env_app
from squitolib.discovery import DEFAULT_PATTERNS, StagePattern, discover, parse_pattern
from squitolib.exceptions import SquitoError
from squitolib.layout import DirectoryLayout

app = typer.Typer(
    name="squito",
    help="Squito - cellSquito Slurm pipeline orchestrator",
    add_completion=True,
    no_args_is_help=True,
)

app.add_typer(env_app, name="env", help="Environment and configuration")


def _patterns(values: Optional[List[str]]) -> List[StagePattern]:
    if not values:
        return list(DEFAULT_PATTERNS)
    return [parse_pattern(v) for v in values]


# Positional arguments and options shared by run and plan
RAW_READS_ARG = typer.Argument(None, help="Directory with paired-end FASTQ files [default: data/raw_reads]")
RESULT_BASE_ARG = typer.Argument(None, help="Base directory for results [default: results]")
LOGS_BASE_ARG = typer.Argument(None, help="Base directory for logs [default: logs]")
DRAFT_OPT = typer.Option(None, "-R", "--draft", help="Draft transcriptome FASTA to assess alongside the new assembly")
CONFIG_OPT = typer.Option(None, "--config", "-c", help="Stage resource config (YAML or legacy parameters.txt)")
SCRIPTS_OPT = typer.Option(None, "--scripts-dir", help="Directory holding the stage scripts")
PATTERN_OPT = typer.Option(None, "--pattern", "-p", help="Read suffix pair R1:R2 (repeatable, tried in order)")


@app.command("run")
def run(
    raw_reads_dir: Optional[Path] = RAW_READS_ARG,
    result_base: Optional[Path] = RESULT_BASE_ARG,
    logs_base: Optional[Path] = LOGS_BASE_ARG,
    draft: Optional[Path] = DRAFT_OPT,
    config: Optional[Path] = CONFIG_OPT,
    scripts_dir: Optional[Path] = SCRIPTS_OPT,
    pattern: Optional[List[str]] = PATTERN_OPT,
    dry_run: bool = typer.Option(False, "--dry-run", help="Print sbatch commands without submitting"),
    as_json: bool = typer.Option(False, "--json", help="Print the run summary as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Submit the whole pipeline to Slurm."""
    from squitolib.pipeline import run_pipeline

    try:
        settings = load_settings(config, scripts_dir)
        configure_logging(verbose, settings.log_level)
        summary = run_pipeline(
            raw_reads_dir or settings.raw_reads_dir,
            result_base or settings.result_base,
            logs_base or settings.logs_base,
            draft_transcriptome=draft,
            settings=settings,
            patterns=_patterns(pattern),
            dry_run=dry_run,
        )
    except SquitoError as e:
        fail(e)
        return

    if as_json:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
        return

    table = Table(title="Submitted Jobs" if not summary.dry_run else "Submitted Jobs (dry run)")
    table.add_column("Task", style="cyan")
    table.add_column("Job ID")
    for task_id, job_id in summary.jobs.items():
        table.add_row(task_id, job_id)
    console.print(table)

    for task_id in summary.failed_optional:
        console.print(f"[yellow]⚠[/yellow]  Optional task {task_id} was not submitted")
    for warning in summary.warnings:
        console.print(f"[yellow]⚠[/yellow]  {escape(warning)}")

    console.print(f"\n[green]✓[/green]  Submitted {len(summary.jobs)} jobs")
    if summary.cancel_script:
        console.print(f"   Cancel all jobs with: [cyan]bash {summary.cancel_script}[/cyan]")


@app.command("plan")
def plan(
    raw_reads_dir: Optional[Path] = RAW_READS_ARG,
    result_base: Optional[Path] = RESULT_BASE_ARG,
    logs_base: Optional[Path] = LOGS_BASE_ARG,
    draft: Optional[Path] = DRAFT_OPT,
    config: Optional[Path] = CONFIG_OPT,
    scripts_dir: Optional[Path] = SCRIPTS_OPT,
    pattern: Optional[List[str]] = PATTERN_OPT,
    as_json: bool = typer.Option(False, "--json", help="Print the task graph as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show the task graph without submitting anything."""
    from squitolib.pipeline import plan_pipeline

    try:
        settings = load_settings(config, scripts_dir)
        configure_logging(verbose, settings.log_level)
        planned = plan_pipeline(
            raw_reads_dir or settings.raw_reads_dir,
            result_base or settings.result_base,
            logs_base or settings.logs_base,
            draft_transcriptome=draft,
            settings=settings,
            patterns=_patterns(pattern),
        )
    except SquitoError as e:
        fail(e)
        return

    order = planned.graph.topological_order()
    if as_json:
        payload = [
            {
                "id": task.id,
                "stage": task.stage,
                "command": task.command,
                "depends_on": sorted(task.depends_on),
                "optional": task.optional,
                "resources": task.resources.model_dump(),
            }
            for task in order
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Task Graph ({len(planned.samples)} samples)")
    table.add_column("Task", style="cyan")
    table.add_column("Stage")
    table.add_column("Depends On")
    table.add_column("Resources", style="dim")
    for task in order:
        res = task.resources
        label = f"{task.id} [yellow](optional)[/yellow]" if task.optional else task.id
        table.add_row(
            label,
            task.stage,
            ", ".join(d for d in planned.graph.tasks if d in task.depends_on) or "-",
            f"{res.partition} {res.time} {res.cpus_per_task}c {res.mem}",
        )
    console.print(table)


@app.command("discover")
def discover_cmd(
    raw_reads_dir: Optional[Path] = RAW_READS_ARG,
    pattern: Optional[List[str]] = PATTERN_OPT,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """List the paired-end samples found in the raw reads directory."""
    try:
        settings = load_settings()
        configure_logging(verbose, settings.log_level)
        samples = discover(raw_reads_dir or settings.raw_reads_dir, _patterns(pattern))
    except SquitoError as e:
        fail(e)
        return

    table = Table(title="Samples")
    table.add_column("Sample", style="cyan")
    table.add_column("Read 1")
    table.add_column("Read 2")
    for sample in samples:
        table.add_row(sample.name, sample.read1_path.name, sample.read2_path.name)
    console.print(table)
    console.print(f"[green]✓[/green]  Found {len(samples)} samples")


@app.command("version")
def version():
    """Show Squito version."""
    from squitolib import __version__
    console.print(f"squito [cyan]{__version__}[/cyan]")


@app.command("info")
def info():
    """Show Squito configuration."""
    from squitolib import __version__

    try:
        settings = load_settings()
    except SquitoError as e:
        fail(e)
        return

    table = Table(title="Squito Info")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Python", sys.version.split()[0])
    table.add_row("Raw Reads", str(settings.raw_reads_dir))
    table.add_row("Results", str(settings.result_base))
    table.add_row("Logs", str(settings.logs_base))
    table.add_row("Scripts", str(settings.scripts_dir))

    stage_config = settings.stage_config_path
    if stage_config.exists():
        table.add_row("Stage Config", f"[green]{stage_config}[/green]")
    else:
        table.add_row("Stage Config", f"[yellow]not found[/yellow] [dim]({stage_config}, using defaults)[/dim]")

    table.add_row("BUSCO Downloads", settings.busco_downloads)
    table.add_row("Dependency", settings.dependency_type)
    table.add_row("Verify Delay", f"{settings.verify_delay_seconds}s")
    table.add_row("Cancel Script", str(DirectoryLayout.resolve(settings.result_base, settings.logs_base).cancel_script))
    console.print(table)

    if not stage_config.exists():
        console.print()
        console.print("[yellow]⚠[/yellow]  No stage config found")
        console.print("   Create one: [cyan]squito env generate[/cyan]")


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    raise SystemExit(main())
