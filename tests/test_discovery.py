"""Tests for paired-end read discovery."""

import pytest

from squitolib.discovery import DEFAULT_PATTERNS, StagePattern, discover, parse_pattern
from squitolib.exceptions import InputError


def _touch(directory, *names):
    for name in names:
        (directory / name).write_bytes(b"")


class TestDiscover:
    """Tests for discover()."""

    def test_mixed_conventions(self, raw_reads):
        """Samples using different suffix conventions are all found."""
        samples = discover(raw_reads)

        assert [s.name for s in samples] == ["sampleA", "sampleB"]
        assert samples[0].read1_path == raw_reads / "sampleA_R1_001.fastq.gz"
        assert samples[0].read2_path == raw_reads / "sampleA_R2_001.fastq.gz"
        assert samples[1].read1_path == raw_reads / "sampleB_1.fq.gz"
        assert samples[1].read2_path == raw_reads / "sampleB_2.fq.gz"

    def test_numbered_fastq_gz_convention(self, tmp_path):
        _touch(
            tmp_path,
            "sampleA_R1_001.fastq.gz", "sampleA_R2_001.fastq.gz",
            "sampleB_1.fastq.gz", "sampleB_2.fastq.gz",
        )
        samples = discover(tmp_path)

        assert [s.name for s in samples] == ["sampleA", "sampleB"]
        assert samples[1].read1_path == tmp_path / "sampleB_1.fastq.gz"
        assert samples[1].read2_path == tmp_path / "sampleB_2.fastq.gz"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(InputError, match="does not exist"):
            discover(tmp_path / "nope")

    def test_empty_directory(self, tmp_path):
        """An empty directory fails before any pairing is attempted."""
        with pytest.raises(InputError, match="is empty"):
            discover(tmp_path)

    def test_no_pairs(self, tmp_path):
        """R1 files without partners yield no samples and an error."""
        _touch(tmp_path, "lonely_R1.fastq.gz", "notes.txt")
        with pytest.raises(InputError, match="No read pairs") as exc_info:
            discover(tmp_path)
        assert exc_info.value.code == "INPUT_ERROR"

    def test_unpaired_candidate_is_dropped(self, raw_reads):
        _touch(raw_reads, "orphan_R1.fastq.gz")
        samples = discover(raw_reads)
        assert "orphan" not in [s.name for s in samples]

    def test_unrelated_files_ignored(self, raw_reads):
        _touch(raw_reads, "README.md", "sampleC.bam")
        assert len(discover(raw_reads)) == 2

    def test_subdirectories_not_searched(self, raw_reads):
        nested = raw_reads / "nested"
        nested.mkdir()
        _touch(nested, "deep_R1.fastq.gz", "deep_R2.fastq.gz")
        assert [s.name for s in discover(raw_reads)] == ["sampleA", "sampleB"]

    def test_pattern_order_decides_naming(self, tmp_path):
        """The first pattern with an existing partner wins."""
        _touch(tmp_path, "s_R1_1.fastq.gz", "s_R2_1.fastq.gz", "s_R1_2.fastq.gz")
        short = StagePattern("_1.fastq.gz", "_2.fastq.gz")
        long = StagePattern("_R1_1.fastq.gz", "_R2_1.fastq.gz")

        assert [s.name for s in discover(tmp_path, [short, long])] == ["s_R1"]
        assert [s.name for s in discover(tmp_path, [long, short])] == ["s"]

    def test_later_pattern_used_when_partner_missing(self, tmp_path):
        _touch(tmp_path, "s_R1_1.fastq.gz", "s_R2_1.fastq.gz")
        short = StagePattern("_1.fastq.gz", "_2.fastq.gz")
        long = StagePattern("_R1_1.fastq.gz", "_R2_1.fastq.gz")

        samples = discover(tmp_path, [short, long])
        assert [s.name for s in samples] == ["s"]
        assert samples[0].read2_path == tmp_path / "s_R2_1.fastq.gz"

    def test_duplicate_sample_name_kept_once(self, tmp_path):
        _touch(tmp_path, "s_R1.fastq.gz", "s_R2.fastq.gz", "s_1.fq.gz", "s_2.fq.gz")
        samples = discover(tmp_path)
        assert len(samples) == 1
        assert samples[0].read1_path.name == "s_1.fq.gz"

    def test_empty_sample_name_skipped(self, tmp_path):
        _touch(tmp_path, "_R1.fastq.gz", "_R2.fastq.gz")
        with pytest.raises(InputError):
            discover(tmp_path)

    def test_deterministic(self, raw_reads):
        assert discover(raw_reads) == discover(raw_reads)


class TestParsePattern:
    """Tests for the R1:R2 pattern syntax."""

    def test_valid(self):
        pattern = parse_pattern("_R1.fq.gz:_R2.fq.gz")
        assert pattern == StagePattern("_R1.fq.gz", "_R2.fq.gz")
        assert str(pattern) == "_R1.fq.gz:_R2.fq.gz"

    @pytest.mark.parametrize("value", ["_R1.fq.gz", ":_R2.fq.gz", "_R1.fq.gz:", "a:b:c", "_x:_x"])
    def test_invalid(self, value):
        with pytest.raises(InputError):
            parse_pattern(value)

    def test_defaults_in_documented_order(self):
        assert [str(p) for p in DEFAULT_PATTERNS] == [
            "_R1_001.fastq.gz:_R2_001.fastq.gz",
            "_R1.fastq.gz:_R2.fastq.gz",
            "_1.fastq.gz:_2.fastq.gz",
            "_1.fq.gz:_2.fq.gz",
            "_R1.fq.gz:_R2.fq.gz",
        ]
