"""Output and log directory layout for a pipeline run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import List, Sequence

from squitolib.exceptions import ProvisionError

LOGGER = logging.getLogger("squito.layout")

R1_MANIFEST_NAME = "r1_trimmed_files.txt"
R2_MANIFEST_NAME = "r2_trimmed_files.txt"
CANCEL_SCRIPT_NAME = "cancel_all_jobs.sh"


@dataclass(frozen=True)
class DirectoryLayout:
    """Resolved result and log directories used by every stage."""

    result_base: Path
    logs_base: Path

    # Results
    trimmed_dir: Path
    merged_dir: Path
    assembly_dir: Path
    quality_dir: Path
    busco_dir: Path
    rnaquast_dir: Path
    draft_busco_dir: Path
    draft_rnaquast_dir: Path
    viz_dir: Path
    temp_dir: Path

    # Logs
    trim_logs: Path
    merge_logs: Path
    assembly_logs: Path
    busco_logs: Path
    rnaquast_logs: Path
    viz_logs: Path
    summary_logs: Path

    @classmethod
    def resolve(cls, result_base: Path, logs_base: Path) -> "DirectoryLayout":
        """Compute the layout under the two base directories without touching disk."""
        result_base = Path(result_base)
        logs_base = Path(logs_base)
        quality_dir = result_base / "04_quality"
        return cls(
            result_base=result_base,
            logs_base=logs_base,
            trimmed_dir=result_base / "01_trimmed",
            merged_dir=result_base / "02_merged",
            assembly_dir=result_base / "03_assembly",
            quality_dir=quality_dir,
            busco_dir=quality_dir / "busco",
            rnaquast_dir=quality_dir / "rnaquast",
            draft_busco_dir=quality_dir / "draft_busco",
            draft_rnaquast_dir=quality_dir / "draft_rnaquast",
            viz_dir=result_base / "05_visualization",
            temp_dir=result_base / "temp",
            trim_logs=logs_base / "01_trimming",
            merge_logs=logs_base / "02_merge",
            assembly_logs=logs_base / "03_assembly",
            busco_logs=logs_base / "04_busco",
            rnaquast_logs=logs_base / "04_rnaquast",
            viz_logs=logs_base / "05_visualization",
            summary_logs=logs_base / "summaries",
        )

    def all_directories(self) -> List[Path]:
        """Every directory in the layout, bases first."""
        return [getattr(self, f.name) for f in fields(self)]

    @property
    def r1_manifest(self) -> Path:
        return self.temp_dir / R1_MANIFEST_NAME

    @property
    def r2_manifest(self) -> Path:
        return self.temp_dir / R2_MANIFEST_NAME

    @property
    def cancel_script(self) -> Path:
        return self.logs_base / CANCEL_SCRIPT_NAME


def provision(result_base: Path, logs_base: Path) -> DirectoryLayout:
    """Create the result and log directory tree.

    Safe to call repeatedly; existing directories are left alone.

    Raises:
        ProvisionError: A directory could not be created.
    """
    layout = DirectoryLayout.resolve(result_base, logs_base)
    for directory in layout.all_directories():
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProvisionError(
                f"Failed to create directory {directory}: {e}",
                details={"path": str(directory)},
            ) from e
    LOGGER.info("Provisioned results in %s and logs in %s", layout.result_base, layout.logs_base)
    return layout


def write_manifests(
    layout: DirectoryLayout,
    r1_paths: Sequence[Path],
    r2_paths: Sequence[Path],
) -> None:
    """Write the trimmed-read file lists consumed by the merge stage.

    Both manifests are rewritten from scratch, one path per line in sample
    order.
    """
    for manifest, paths in ((layout.r1_manifest, r1_paths), (layout.r2_manifest, r2_paths)):
        try:
            with manifest.open("w", encoding="utf-8") as handle:
                for path in paths:
                    handle.write(f"{path}\n")
        except OSError as e:
            raise ProvisionError(
                f"Failed to write manifest {manifest}: {e}",
                details={"path": str(manifest)},
            ) from e
        LOGGER.debug("Wrote %d entries to %s", len(paths), manifest)
