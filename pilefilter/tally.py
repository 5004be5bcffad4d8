'''
Module      : Tally
Description : Per-base counts for a single pileup column.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX

Every read in a column is first offered to the read expression. Reads that
fail it are counted in `fail` and removed from `depth`. The remaining reads
are counted by the base they show at the column, or as a deletion or a
reference skip. Reference skips (introns in spliced alignments) do not
count towards depth.
'''

from collections import OrderedDict


# fraction of the maximum pileup depth at which a column is flagged
NEAR_MAX_DEPTH_FRACTION = 0.99


class PileupPosition(object):
    fields = ["ref_seq", "pos", "depth", "a", "c", "g", "t", "n",
              "ins", "del_", "ref_skip", "fail", "near_max_depth"]

    def __init__(self, ref_seq, pos):
        self.ref_seq = ref_seq
        self.pos = pos
        self.depth = 0
        self.a = 0
        self.c = 0
        self.g = 0
        self.t = 0
        self.n = 0
        self.ins = 0
        self.del_ = 0
        self.ref_skip = 0
        self.fail = 0
        self.near_max_depth = False

    def count_base(self, base):
        base = base.upper()
        if base == 'A':
            self.a += 1
        elif base == 'C':
            self.c += 1
        elif base == 'G':
            self.g += 1
        elif base == 'T':
            self.t += 1
        else:
            self.n += 1

    # Count one read that has already passed the read expression.
    # Order matters: htslib marks a reference skip as a deletion too.
    def count(self, pileup_read):
        if pileup_read.is_refskip:
            self.ref_skip += 1
            self.depth -= 1
        elif pileup_read.is_del:
            self.del_ += 1
        else:
            sequence = pileup_read.alignment.query_sequence
            self.count_base(sequence[pileup_read.query_position])
        if pileup_read.indel > 0:
            self.ins += 1

    def reject(self):
        self.depth -= 1
        self.fail += 1

    def __repr__(self):
        values = ", ".join(f"{field}={getattr(self, field)!r}" for field in PileupPosition.fields)
        return f"PileupPosition({values})"


def is_near_max_depth(raw_depth, max_depth):
    return max_depth > 0 and raw_depth >= max_depth * NEAR_MAX_DEPTH_FRACTION


def read_passes(bridge, pileup_read):
    return bridge.evaluate_read(pileup_read.alignment, pileup_read.query_position)


def from_pileup(column, ref_seq, bridge, max_depth):
    '''Tally a pysam PileupColumn, filtering every read through the bridge'''
    pileup_reads = column.pileups
    position = PileupPosition(ref_seq, column.reference_pos)
    position.depth = len(pileup_reads)
    position.near_max_depth = is_near_max_depth(len(pileup_reads), max_depth)
    for pileup_read in pileup_reads:
        if read_passes(bridge, pileup_read):
            position.count(pileup_read)
        else:
            position.reject()
    return position


# Prefer the mate with the higher mapping quality, then the first of pair.
# sorted() is stable, so otherwise the first read seen wins.
def mate_preference(pileup_read):
    alignment = pileup_read.alignment
    return (-alignment.mapping_quality, 0 if alignment.is_read1 else 1)


def from_pileup_mate_aware(column, ref_seq, bridge, max_depth):
    '''Tally a pysam PileupColumn counting overlapping mates only once.

    Reads are grouped by query name. Every read is offered to the bridge and
    each failing read counts in `fail`. Of the reads of a template that pass,
    only the preferred mate is counted, the others are dropped.
    '''
    pileup_reads = column.pileups
    position = PileupPosition(ref_seq, column.reference_pos)
    position.near_max_depth = is_near_max_depth(len(pileup_reads), max_depth)
    templates = OrderedDict()
    for pileup_read in pileup_reads:
        templates.setdefault(pileup_read.alignment.query_name, []).append(pileup_read)
    for mates in templates.values():
        passing = []
        for pileup_read in mates:
            if read_passes(bridge, pileup_read):
                passing.append(pileup_read)
            else:
                position.fail += 1
        if passing:
            position.depth += 1
            position.count(sorted(passing, key=mate_preference)[0])
    return position
