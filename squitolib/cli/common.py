"""Helpers shared by the Squito CLI command groups."""

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from squitolib.config import Settings, get_settings
from squitolib.exceptions import ConfigError, PipelineError, SquitoError

console = Console()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(verbose: bool, level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )


def load_settings(
    config: Optional[Path] = None,
    scripts_dir: Optional[Path] = None,
) -> Settings:
    """Load settings and apply command-line overrides.

    Raises:
        ConfigError: A ``SQUITO_*`` variable or ``.env`` entry is invalid.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        raise ConfigError(f"Invalid SQUITO_* environment settings: {e}") from e

    overrides = {}
    if config is not None:
        overrides["stage_config_path"] = config
    if scripts_dir is not None:
        overrides["scripts_dir"] = scripts_dir
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def fail(exc: SquitoError) -> None:
    """Report a domain error and exit with its exit code."""
    console.print(f"[red bold]✗ {escape(exc.message)}[/red bold]")
    if isinstance(exc, PipelineError) and exc.run is not None:
        if exc.run.handles:
            console.print(f"   Jobs already submitted: {len(exc.run.handles)}")
            for task_id, handle in exc.run.handles.items():
                console.print(f"   • {task_id}: {handle.scheduler_job_id}")
        if exc.run.cancel_script:
            console.print(f"   Cancel them with: [cyan]bash {exc.run.cancel_script}[/cyan]")
    raise typer.Exit(exc.exit_code)
