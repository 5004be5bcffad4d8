'''
Module      : Exclusion
Description : Regions read from BED files and the index of excluded positions.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX
'''

import logging
from collections import namedtuple
from intervaltree import IntervalTree
from pilefilter.errors import MalformedIntervalError


'''
Regions are represented in BED format as:
chrom	start	end 	[other fields]

where:
start and end are zero based, and the region is defined by the half-closed interval:
[start, end)

Header lines (starting with #, track or browser) and blank lines are skipped.
'''
NUM_REQUIRED_BED_FIELDS = 3
BED_HEADER_PREFIXES = ("#", "track", "browser")

BedRecord = namedtuple("BedRecord", ["chrom", "start", "end", "line_number"])


def read_bed_regions(filepath):
    '''Read a BED file, yield one BedRecord per data row'''
    logging.info(f"Reading regions from {filepath}")
    num_regions = 0
    with open(filepath) as file:
        for line_number, row in enumerate(file, 1):
            row = row.strip()
            if not row or row.startswith(BED_HEADER_PREFIXES):
                continue
            fields = row.split()
            if len(fields) < NUM_REQUIRED_BED_FIELDS:
                raise MalformedIntervalError(
                    f"BED record on line {line_number} of {filepath} is too short: {row}")
            chrom, start, end = fields[:NUM_REQUIRED_BED_FIELDS]
            try:
                start = int(start)
                end = int(end)
            except ValueError:
                raise MalformedIntervalError(
                    f"BED record on line {line_number} of {filepath} is invalid: unable to parse coordinates: {row}")
            num_regions += 1
            yield BedRecord(chrom=chrom, start=start, end=end, line_number=line_number)
    logging.info(f"Read {num_regions} regions from {filepath}")


def lookup_tid(header, chrom):
    '''Reference id of chrom in an alignment header, or None if it is not there'''
    try:
        tid = header.get_tid(chrom)
    except (KeyError, ValueError):
        return None
    if tid is None or tid < 0:
        return None
    return tid


def resolve_records(records, header, warned=None):
    '''Pair each BED record with its reference id in the alignment header.

    Records on chromosomes missing from the header are skipped, with one
    warning per distinct chromosome name. Names already in warned are not
    reported again; warned is updated with every new unknown name.
    Empty intervals are skipped. A record whose end precedes its start
    raises MalformedIntervalError.

    Yields:
        (tid, start, end) triples
    '''
    if warned is None:
        warned = set()
    for record in records:
        if record.end < record.start:
            raise MalformedIntervalError(
                f"BED record on line {record.line_number} is invalid: stop < start ({record.chrom} {record.start} {record.end})")
        tid = lookup_tid(header, record.chrom)
        if tid is None:
            if record.chrom not in warned:
                warned.add(record.chrom)
                logging.warning(f"Skipping BED records on chromosome not found in BAM/CRAM header: {record.chrom}")
            continue
        if record.end == record.start:
            continue
        yield tid, record.start, record.end


def merge_intervals(triples):
    '''Group (tid, start, end) triples by tid into merged interval trees'''
    trees = {}
    for tid, start, end in triples:
        if tid not in trees:
            trees[tid] = IntervalTree()
        trees[tid].addi(start, end)
    for tree in trees.values():
        # strict=False also joins intervals that only touch
        tree.merge_overlaps(strict=False)
    return trees


class ExclusionIndex(object):
    '''Merged, per-reference intervals answering "is this position excluded?"

    Built once per scheduling unit and read-only afterwards.
    '''

    def __init__(self, per_chromosome):
        self.per_chromosome = per_chromosome

    @classmethod
    def build(cls, records, header, warned=None):
        return cls(merge_intervals(resolve_records(records, header, warned)))

    @classmethod
    def from_bed(cls, filepath, header, warned=None):
        return cls.build(read_bed_regions(filepath), header, warned)

    def contains(self, tid, pos):
        tree = self.per_chromosome.get(tid)
        if tree is None:
            # no exclusion data for this reference means excluded nowhere
            return False
        return tree.overlaps(pos, pos + 1)

    def intervals(self, tid):
        tree = self.per_chromosome.get(tid)
        if tree is None:
            return []
        return [(interval.begin, interval.end) for interval in sorted(tree)]

    def __len__(self):
        return sum(len(tree) for tree in self.per_chromosome.values())
