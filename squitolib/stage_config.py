"""Per-stage resource configuration.

Stage resources (partition, time limit, nodes, cores, memory, extra tool
options) are read from a YAML file, ``config/stages.yaml`` by default::

    stages:
      trim:
        partition: short
        time: "04:00:00"
        nodes: 1
        cpus_per_task: 8
        mem: 16G
      assembly:
        cpus_per_task: 32
        mem: 256G
        opts: "--ss rf"

The older ``parameters.txt`` format of shell assignments
(``fastp_partition="short"``, ``rnaSpades_mem="256G"`` ...) is still
accepted for any file with a ``.txt`` suffix.

Stages missing from the file fall back to the built-in defaults.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from squitolib.exceptions import ConfigError

LOGGER = logging.getLogger("squito.stage_config")

TRIM = "trim"
MERGE = "merge"
ASSEMBLY = "assembly"
BUSCO = "busco"
RNAQUAST = "rnaquast"
VISUALIZE = "visualize"

STAGE_NAMES = (TRIM, MERGE, ASSEMBLY, BUSCO, RNAQUAST, VISUALIZE)

# Variable prefixes used by parameters.txt
LEGACY_PREFIXES = {
    "fastp": TRIM,
    "cat": MERGE,
    "rnaSpades": ASSEMBLY,
    "busco": BUSCO,
    "rnaQuast": RNAQUAST,
    "visualize": VISUALIZE,
}

LEGACY_FIELDS = {
    "partition": "partition",
    "time": "time",
    "nodes": "nodes",
    "cpu_cores_per_task": "cpus_per_task",
    "mem": "mem",
    "opts": "opts",
}

VALID_STAGE_FIELDS = {
    "partition": "Slurm partition",
    "time": "Wall-clock limit (HH:MM:SS or D-HH:MM:SS)",
    "nodes": "Node count",
    "cpus_per_task": "CPU cores per task",
    "mem": "Memory (e.g. 16G)",
    "opts": "Extra options passed through to the stage tool",
}


class StageResources(BaseModel):
    """Scheduler resources and tool options for one stage."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    partition: str = "normal"
    time: str = "01:00:00"
    nodes: int = Field(default=1, ge=1)
    cpus_per_task: int = Field(default=1, ge=1)
    mem: str = "8G"
    opts: str = ""

    @field_validator("mem", mode="before")
    @classmethod
    def normalise_mem(cls, v: Any) -> Any:
        """Bare integers are read as gigabytes."""
        if isinstance(v, int) and not isinstance(v, bool):
            return f"{v}G"
        return v

    @field_validator("time", "partition", "opts", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if v is None:
            return ""
        return v


DEFAULT_STAGE_RESOURCES: Dict[str, StageResources] = {
    TRIM: StageResources(time="04:00:00", cpus_per_task=8, mem="16G"),
    MERGE: StageResources(time="02:00:00", cpus_per_task=1, mem="8G"),
    ASSEMBLY: StageResources(time="2-00:00:00", cpus_per_task=32, mem="128G"),
    BUSCO: StageResources(time="12:00:00", cpus_per_task=16, mem="64G"),
    RNAQUAST: StageResources(time="12:00:00", cpus_per_task=16, mem="64G"),
    VISUALIZE: StageResources(time="01:00:00", cpus_per_task=1, mem="8G"),
}


def parse_legacy_parameters(text: str) -> Dict[str, Dict[str, str]]:
    """Parse ``parameters.txt`` shell assignments into per-stage mappings.

    Unknown variables are ignored. Raises ConfigError on lines that are not
    valid shell words.
    """
    stages: Dict[str, Dict[str, str]] = {}
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            LOGGER.debug("Skipping parameters line %d: %s", lineno, raw_line)
            continue
        name, raw_value = line.split("=", 1)
        name = name.strip()
        try:
            words = shlex.split(raw_value, comments=True)
        except ValueError as e:
            raise ConfigError(
                f"Invalid value for {name} on line {lineno}: {e}",
                details={"line": lineno},
            ) from e
        value = " ".join(words)

        for prefix, stage in LEGACY_PREFIXES.items():
            if not name.startswith(prefix + "_"):
                continue
            suffix = name[len(prefix) + 1:]
            target = LEGACY_FIELDS.get(suffix)
            if target:
                stages.setdefault(stage, {})[target] = value
            break
    return stages


def validate_config_data(data: Any) -> Tuple[bool, List[str], List[str]]:
    """Validate a loaded stage config mapping.

    Returns:
        Tuple of (is_valid, errors, warnings).
    """
    errors: List[str] = []
    warnings: List[str] = []

    if data is None:
        warnings.append("Config file is empty; using defaults")
        return True, errors, warnings

    if not isinstance(data, dict):
        errors.append(f"Config must be a YAML mapping, got {type(data).__name__}")
        return False, errors, warnings

    stages = data.get("stages", {})
    if stages is None:
        return True, errors, warnings
    if not isinstance(stages, dict):
        errors.append(f"'stages' must be a mapping, got {type(stages).__name__}")
        return False, errors, warnings

    for key in data.keys():
        if key != "stages":
            warnings.append(f"Unknown top-level field '{key}' (will be ignored)")

    for stage_name, values in stages.items():
        if stage_name not in STAGE_NAMES:
            warnings.append(f"Unknown stage '{stage_name}' (will be ignored)")
            continue
        if values is None:
            continue
        if not isinstance(values, dict):
            errors.append(f"stages.{stage_name} must be a mapping, got {type(values).__name__}")
            continue
        for field_name in values.keys():
            if field_name not in VALID_STAGE_FIELDS:
                errors.append(f"stages.{stage_name}: unknown field '{field_name}'")

    return len(errors) == 0, errors, warnings


@dataclass
class StageConfig:
    """Resources for every pipeline stage, keyed by stage name."""

    stages: Dict[str, StageResources] = field(
        default_factory=lambda: dict(DEFAULT_STAGE_RESOURCES)
    )
    source_path: Optional[Path] = None

    def for_stage(self, stage: str) -> StageResources:
        try:
            return self.stages[stage]
        except KeyError:
            raise ConfigError(f"No resources configured for stage '{stage}'") from None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], source_path: Optional[Path] = None) -> "StageConfig":
        """Build a StageConfig from a ``{"stages": {...}}`` mapping.

        Values are layered on top of the defaults for each stage.
        """
        is_valid, errors, warnings = validate_config_data(data)
        where = str(source_path) if source_path else "stage config"
        for warn in warnings:
            LOGGER.warning("%s: %s", where, warn)
        if not is_valid:
            raise ConfigError(
                f"Invalid stage configuration in {where}: {'; '.join(errors)}",
                details={"errors": errors},
            )

        stages = dict(DEFAULT_STAGE_RESOURCES)
        for stage_name, values in ((data or {}).get("stages") or {}).items():
            if stage_name not in STAGE_NAMES or not values:
                continue
            merged = {**stages[stage_name].model_dump(), **values}
            try:
                stages[stage_name] = StageResources(**merged)
            except ValidationError as e:
                raise ConfigError(
                    f"Invalid resources for stage '{stage_name}' in {where}: {e}",
                    details={"stage": stage_name},
                ) from e
        return cls(stages=stages, source_path=source_path)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "StageConfig":
        """Load stage configuration from a YAML or legacy parameters file.

        A missing file is not an error: defaults are used and a warning
        is logged.
        """
        if path is not None:
            path = Path(path)
        if path is None or not path.exists():
            LOGGER.warning("Stage config not found at %s; using defaults", path)
            return cls(source_path=None)

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read stage config {path}: {e}") from e

        if path.suffix == ".txt":
            data: Any = {"stages": parse_legacy_parameters(text)}
        else:
            try:
                data = yaml.safe_load(text)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML syntax in {path}: {e}") from e

        config = cls.from_mapping(data, source_path=path)
        LOGGER.info("Loaded stage config from %s", path)
        return config


def render_template() -> str:
    """Render a stage config YAML populated with the defaults."""
    body = {
        "stages": {
            name: resources.model_dump() for name, resources in DEFAULT_STAGE_RESOURCES.items()
        }
    }
    header = (
        "# cellsquito stage resources\n"
        "# Each stage is submitted to Slurm with these settings.\n"
        "# 'opts' is passed through to the stage tool (rnaSpades, rnaQuast).\n"
    )
    return header + yaml.safe_dump(body, sort_keys=False)
