"""Paired-end read discovery.

Scans a raw reads directory for R1 files, pairs each with its R2 partner
using an ordered list of suffix conventions, and derives the sample name by
stripping the matched R1 suffix. The first pattern whose R2 partner exists
wins, so the pattern order decides sample naming when conventions overlap
(``x_R1_001.fastq.gz`` vs ``x_1.fastq.gz``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from squitolib.exceptions import InputError

LOGGER = logging.getLogger("squito.discovery")


@dataclass(frozen=True)
class StagePattern:
    """A read-1/read-2 filename suffix pair."""

    r1_suffix: str
    r2_suffix: str

    def __str__(self) -> str:
        return f"{self.r1_suffix}:{self.r2_suffix}"


@dataclass(frozen=True)
class Sample:
    """A biological sample with its two paired-end read files."""

    name: str
    read1_path: Path
    read2_path: Path


DEFAULT_PATTERNS: List[StagePattern] = [
    StagePattern("_R1_001.fastq.gz", "_R2_001.fastq.gz"),
    StagePattern("_R1.fastq.gz", "_R2.fastq.gz"),
    StagePattern("_1.fastq.gz", "_2.fastq.gz"),
    StagePattern("_1.fq.gz", "_2.fq.gz"),
    StagePattern("_R1.fq.gz", "_R2.fq.gz"),
]


def parse_pattern(value: str) -> StagePattern:
    """Parse an ``r1_suffix:r2_suffix`` string."""
    parts = value.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InputError(
            f"Invalid read pattern '{value}': expected R1_SUFFIX:R2_SUFFIX",
            details={"pattern": value},
        )
    if parts[0] == parts[1]:
        raise InputError(
            f"Invalid read pattern '{value}': R1 and R2 suffixes are identical",
            details={"pattern": value},
        )
    return StagePattern(parts[0], parts[1])


def _match_sample(candidate: Path, patterns: Sequence[StagePattern]) -> Optional[Sample]:
    name = candidate.name
    for pattern in patterns:
        if not name.endswith(pattern.r1_suffix):
            continue
        stem = name[: -len(pattern.r1_suffix)]
        r2_path = candidate.with_name(stem + pattern.r2_suffix)
        if not r2_path.is_file():
            continue
        if not stem:
            LOGGER.warning("Skipping %s: sample name would be empty", candidate)
            return None
        return Sample(name=stem, read1_path=candidate, read2_path=r2_path)
    return None


def discover(
    raw_reads_dir: Path,
    patterns: Sequence[StagePattern] = DEFAULT_PATTERNS,
) -> List[Sample]:
    """Discover paired-end samples in ``raw_reads_dir``.

    Args:
        raw_reads_dir: Directory holding the raw FASTQ files.
        patterns: Ordered suffix pairs; the first pattern with an existing
            R2 partner wins for each R1 candidate.

    Returns:
        Samples ordered by R1 path.

    Raises:
        InputError: The directory is missing or empty, or no pair was found.
    """
    raw_reads_dir = Path(raw_reads_dir)
    if not raw_reads_dir.is_dir():
        raise InputError(
            f"Raw reads directory {raw_reads_dir} does not exist",
            details={"raw_reads_dir": str(raw_reads_dir)},
        )

    entries = sorted(raw_reads_dir.iterdir())
    if not entries:
        raise InputError(
            f"Raw reads directory {raw_reads_dir} is empty",
            details={"raw_reads_dir": str(raw_reads_dir)},
        )

    r1_suffixes = tuple(p.r1_suffix for p in patterns)
    candidates = [p for p in entries if p.is_file() and p.name.endswith(r1_suffixes)]
    LOGGER.debug("Found %d R1 candidates in %s", len(candidates), raw_reads_dir)

    samples: List[Sample] = []
    seen = set()
    for candidate in candidates:
        sample = _match_sample(candidate, patterns)
        if sample is None:
            LOGGER.debug("No R2 partner for %s", candidate)
            continue
        if sample.name in seen:
            LOGGER.warning("Skipping %s: sample %s was already discovered", candidate, sample.name)
            continue
        seen.add(sample.name)
        samples.append(sample)

    if not samples:
        raise InputError(
            f"No read pairs found in {raw_reads_dir}",
            details={
                "raw_reads_dir": str(raw_reads_dir),
                "patterns": [str(p) for p in patterns],
            },
        )

    LOGGER.info("Found %d paired read files in %s", len(samples), raw_reads_dir)
    for sample in samples:
        LOGGER.debug("Sample %s: R1=%s R2=%s", sample.name, sample.read1_path, sample.read2_path)
    return samples
