"""Centralized configuration management for the orchestrator.

Uses Pydantic BaseSettings for environment variable loading with validation.
Every field can be overridden with an ``SQUITO_``-prefixed environment
variable or from a ``.env`` file in the working directory.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DEPENDENCY_TYPES = {"afterok"}


class Settings(BaseSettings):
    """Orchestrator settings.

    Environment variable names are ``SQUITO_`` plus the uppercase field name,
    e.g. ``SQUITO_VERIFY_DELAY_SECONDS=0``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SQUITO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========== Inputs and outputs ==========
    raw_reads_dir: Path = Field(
        default=Path("data/raw_reads"),
        description="Directory holding paired-end FASTQ files",
    )
    result_base: Path = Field(
        default=Path("results"),
        description="Base directory for all stage outputs",
    )
    logs_base: Path = Field(
        default=Path("logs"),
        description="Base directory for stage logs and the cancel script",
    )

    # ========== Stage programs ==========
    stage_config_path: Path = Field(
        default=Path("config/stages.yaml"),
        description="Per-stage resource configuration (YAML or legacy parameters.txt)",
    )
    scripts_dir: Path = Field(
        default=Path("bin"),
        description="Directory holding the stage wrapper scripts",
    )
    busco_downloads: str = Field(
        default="./busco_downloads",
        description="BUSCO lineage database directory passed to the busco stage",
    )
    conda_env_name: str = Field(
        default="cellSquito",
        description="Conda environment the stage scripts activate",
    )

    # ========== Scheduler ==========
    sbatch_bin: str = Field(default="sbatch", description="Slurm submission binary")
    scontrol_bin: str = Field(default="scontrol", description="Slurm job query binary")
    scancel_bin: str = Field(default="scancel", description="Slurm cancel binary")
    dependency_type: str = Field(
        default="afterok",
        description="Dependency join used between stages",
    )
    verify_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay before checking that a submitted job is registered",
    )
    command_timeout_seconds: int = Field(
        default=60,
        gt=0,
        description="Timeout for each scheduler command",
    )

    # ========== Logging ==========
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )

    @field_validator("dependency_type")
    @classmethod
    def validate_dependency_type(cls, v: str) -> str:
        """Only the all-must-succeed join is supported."""
        if v.lower() not in SUPPORTED_DEPENDENCY_TYPES:
            raise ValueError(f"dependency_type must be one of: {SUPPORTED_DEPENDENCY_TYPES}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v.upper()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the process.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()


def get_settings_for_testing(**overrides) -> Settings:
    """Create settings instance with overrides for testing.

    This bypasses the cache, allowing tests to use custom configuration.
    """
    return Settings(**overrides)
