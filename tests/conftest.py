"""Pytest configuration and shared fixtures for pilefilter tests."""

import sys
from pathlib import Path

import pysam
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


# chr1 starts and ends with the bases used in the sequence cache tests
CHR1_HEAD = "GGGCACAGCCTCACC"
CHR1_TAIL = "CCCCTCCGTG"
CHR1 = CHR1_HEAD + ("ACGT" * 24)[:95] + CHR1_TAIL
CHR2 = "TTGCA" * 12
REFERENCES = [("chr1", CHR1), ("chr2", CHR2)]
FASTA_LINE_WIDTH = 60


def header_dict():
    return {"HD": {"VN": "1.6", "SO": "coordinate"},
            "SQ": [{"SN": name, "LN": len(seq)} for name, seq in REFERENCES]}


@pytest.fixture
def header():
    return pysam.AlignmentHeader.from_dict(header_dict())


@pytest.fixture
def reference_fasta(tmp_path):
    """An indexed FASTA file holding chr1 and chr2."""
    path = tmp_path / "reference.fa"
    with open(path, "w") as fasta:
        for name, seq in REFERENCES:
            fasta.write(f">{name}\n")
            for offset in range(0, len(seq), FASTA_LINE_WIDTH):
                fasta.write(seq[offset:offset + FASTA_LINE_WIDTH] + "\n")
    pysam.faidx(str(path))
    return path


def make_segment(header, name, chrom, start, sequence, cigar=None, flag=0,
                 mapq=60, quality=30, tags=None, mate_start=None):
    segment = pysam.AlignedSegment(header)
    segment.query_name = name
    segment.flag = flag
    segment.reference_name = chrom
    segment.reference_start = start
    segment.mapping_quality = mapq
    segment.cigarstring = cigar if cigar is not None else f"{len(sequence)}M"
    segment.query_sequence = sequence
    segment.query_qualities = pysam.qualitystring_to_array(chr(quality + 33) * len(sequence))
    if mate_start is not None:
        segment.next_reference_name = chrom
        segment.next_reference_start = mate_start
    if tags:
        segment.set_tags(tags)
    return segment


@pytest.fixture
def make_bam(tmp_path):
    """Factory writing a sorted, indexed BAM file.

    Each read is a dict of keyword arguments for make_segment.
    """
    def _make_bam(reads, name="reads.bam"):
        path = tmp_path / name
        header = pysam.AlignmentHeader.from_dict(header_dict())
        segments = [make_segment(header, **read) for read in reads]
        segments.sort(key=lambda s: (s.reference_id, s.reference_start))
        with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
            for segment in segments:
                bam.write(segment)
        pysam.index(str(path))
        return path
    return _make_bam


@pytest.fixture
def two_read_bam(make_bam):
    """A forward read over the first 10 bases of chr1 and a reverse read over the last 10."""
    return make_bam([
        dict(name="first", chrom="chr1", start=0, sequence=CHR1[0:10]),
        dict(name="last", chrom="chr1", start=110, sequence=CHR1[110:120], flag=16),
    ])
