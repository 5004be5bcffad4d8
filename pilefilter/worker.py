'''
Module      : Worker
Description : Process one genomic region: pileup, filter, annotate.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX
'''

import logging
import os.path
from collections import namedtuple
import pysam
from pilefilter.exclusion import ExclusionIndex
from pilefilter.expression import ExpressionBridge
from pilefilter.flank import flank_window
from pilefilter.sequence_cache import SequenceCache
from pilefilter.tally import from_pileup, from_pileup_mate_aware


DEFAULT_MAX_DEPTH = 100000

# RegionWorker states
INIT = "INIT"
BUILD = "BUILD"
SCAN = "SCAN"
DONE = "DONE"

PositionRecord = namedtuple("PositionRecord", ["position", "ref_window"])


def open_alignments(bamfile, fasta_path=None):
    resolved_path = os.path.realpath(bamfile)
    if fasta_path is not None:
        return pysam.AlignmentFile(resolved_path, reference_filename=fasta_path)
    return pysam.AlignmentFile(resolved_path)


class RegionProcessor(object):
    '''Configuration of a run, shared read-only by every worker.

    exclude_records are BedRecords already read from the exclude BED file.
    Chromosome names in warned have been reported as unknown and are not
    reported again by the workers.
    '''

    def __init__(self, bamfile, read_expression=None, pile_expression=None,
                 max_depth=DEFAULT_MAX_DEPTH, exclude_records=None, mate_fix=False,
                 fasta_path=None, flank=0, warned=None):
        self.bamfile = bamfile
        self.read_expression = read_expression
        self.pile_expression = pile_expression
        self.max_depth = max_depth
        self.exclude_records = exclude_records
        self.mate_fix = mate_fix
        self.fasta_path = fasta_path
        self.flank = flank
        self.warned = frozenset(warned) if warned is not None else frozenset()

    def process_region(self, tid, start, stop):
        return RegionWorker(self, tid, start, stop).run()


class RegionWorker(object):
    '''Runs one scheduling unit: INIT -> BUILD -> SCAN -> DONE.

    Everything built here (alignment reader, reference cache, exclusion
    index and expression environment) belongs to this worker alone.
    A worker runs once; the region either completes or raises.
    '''

    def __init__(self, processor, tid, start, stop):
        self.processor = processor
        self.tid = tid
        self.start = start
        self.stop = stop
        self.state = INIT
        self.samfile = None
        self.fasta = None
        self.cache = None
        self.exclusions = None
        self.bridge = None

    def run(self):
        if self.state != INIT:
            raise RuntimeError(f"region worker has already run (state {self.state})")
        try:
            self.build()
            return self.scan()
        finally:
            self.close()
            self.state = DONE

    def build(self):
        self.state = BUILD
        processor = self.processor
        self.samfile = open_alignments(processor.bamfile, processor.fasta_path)
        if processor.fasta_path is not None:
            self.fasta = pysam.FastaFile(processor.fasta_path)
            self.cache = SequenceCache(self.fasta)
        if processor.exclude_records is not None:
            self.exclusions = ExclusionIndex.build(
                processor.exclude_records, self.samfile.header, set(processor.warned))
        self.bridge = ExpressionBridge(processor.read_expression, processor.pile_expression)

    def scan(self):
        self.state = SCAN
        processor = self.processor
        chrom = self.samfile.get_reference_name(self.tid)
        logging.debug(f"Processing region {chrom}:{self.start}-{self.stop}")
        if processor.mate_fix:
            tally = from_pileup_mate_aware
        else:
            tally = from_pileup
        result = []
        # the pileup can start before the region for reads that overhang its edges
        for column in self.samfile.pileup(chrom, self.start, self.stop,
                                          truncate=True, stepper='nofilter',
                                          ignore_overlaps=False, ignore_orphans=False,
                                          min_base_quality=0,
                                          max_depth=processor.max_depth):
            pos = column.reference_pos
            if pos < self.start or pos >= self.stop:
                continue
            if self.exclusions is not None and self.exclusions.contains(self.tid, pos):
                continue
            position = tally(column, chrom, self.bridge, processor.max_depth)
            if position.depth <= 0:
                continue
            ref_window = None
            if self.cache is not None:
                ref_window = flank_window(self.cache, chrom, pos, processor.flank)
            if not self.bridge.evaluate_position(position, ref_window):
                continue
            result.append(PositionRecord(position=position, ref_window=ref_window))
        if self.bridge.read_errors > 0:
            logging.warning(f"{self.bridge.read_errors} reads failed the read expression with an error in {chrom}:{self.start}-{self.stop}")
        return result

    def close(self):
        if self.samfile is not None:
            self.samfile.close()
        if self.fasta is not None:
            self.fasta.close()
