"""Environment and configuration commands for Squito CLI."""

import os
import shutil
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from squitolib.cli.common import console, fail, load_settings
from squitolib.exceptions import SquitoError

env_app = typer.Typer(help="Environment and configuration commands")


@env_app.command("status")
def status():
    """Check system status (Slurm, stage scripts, conda, dependencies)."""
    from squitolib.task_graph import STAGE_SCRIPTS

    try:
        settings = load_settings()
    except SquitoError as e:
        fail(e)
        return

    table = Table(title="System Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status")

    # Python
    import sys
    table.add_row("Python", f"{sys.version.split()[0]}")

    # Conda environment
    conda_env = os.environ.get("CONDA_DEFAULT_ENV", "")
    if conda_env == settings.conda_env_name:
        table.add_row("Conda Env", f"[green]{conda_env}[/green]")
    elif conda_env:
        table.add_row("Conda Env", f"[yellow]{conda_env}[/yellow] (expected {settings.conda_env_name})")
    else:
        table.add_row("Conda Env", "[yellow]Not active[/yellow]")

    # Slurm binaries
    for binary in (settings.sbatch_bin, settings.scontrol_bin, settings.scancel_bin):
        location = shutil.which(binary)
        if location:
            table.add_row(binary, f"[green]{location}[/green]")
        else:
            table.add_row(binary, "[red]Not found[/red]")

    # Stage scripts
    missing = [name for name in STAGE_SCRIPTS.values() if not (settings.scripts_dir / name).is_file()]
    if missing:
        table.add_row("Stage Scripts", f"[red]Missing {len(missing)}[/red] [dim]({', '.join(missing)})[/dim]")
    else:
        table.add_row("Stage Scripts", f"[green]Found[/green] [dim]({settings.scripts_dir})[/dim]")

    # Stage config
    if settings.stage_config_path.exists():
        table.add_row("Stage Config", f"[green]{settings.stage_config_path}[/green]")
    else:
        table.add_row("Stage Config", "[yellow]Not found[/yellow] (defaults)")

    # .env file
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        table.add_row(".env file", "[green]Found[/green]")
    else:
        table.add_row(".env file", "[yellow]Not found[/yellow]")

    console.print(table)

    # Show key dependencies
    console.print("\n[bold]Key Dependencies:[/bold]")
    deps = ["pydantic", "pydantic_settings", "typer", "rich", "yaml"]
    for dep in deps:
        try:
            mod = __import__(dep)
            version = getattr(mod, "__version__", "?")
            console.print(f"  [green]✓[/green] {dep} ({version})")
        except ImportError:
            console.print(f"  [red]✗[/red] {dep} (not installed)")


@env_app.command("generate")
def generate(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the stage config"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing stage config"),
):
    """Generate a stage resource config template."""
    from squitolib.stage_config import render_template

    if output is None:
        try:
            output = load_settings().stage_config_path
        except SquitoError as e:
            fail(e)
            return
    config_file = output

    if config_file.exists() and not force:
        console.print(f"[yellow]⚠[/yellow]  {config_file} already exists")
        console.print("   Use --force to overwrite")
        return

    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(render_template())
    console.print(f"[green]✓[/green]  Created {config_file}")
    console.print("   Edit it to set partitions, time limits and memory per stage")
