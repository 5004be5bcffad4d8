'''
Module      : Regions
Description : Divide the genome into scheduling units and process them in parallel.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX

Units are dispatched to a thread pool, but their results are handed back in
dispatch order, so the output stays in genome coordinate order no matter
which unit finishes first.
'''

import logging
from collections import deque, namedtuple
from concurrent.futures import ThreadPoolExecutor
from pilefilter.exclusion import resolve_records, merge_intervals


DEFAULT_CHUNKSIZE = 1000000
# units in flight per worker thread
UNITS_PER_THREAD = 4

Region = namedtuple("Region", ["tid", "start", "stop"])


def chunk(tid, start, stop, chunksize):
    for chunk_start in range(start, stop, chunksize):
        yield Region(tid=tid, start=chunk_start, stop=min(chunk_start + chunksize, stop))


def genome_regions(header, chunksize=DEFAULT_CHUNKSIZE):
    '''Every reference in the header, split into chunks, in header order'''
    for tid, length in enumerate(header.lengths):
        yield from chunk(tid, 0, length, chunksize)


def bed_regions(records, header, chunksize=DEFAULT_CHUNKSIZE, warned=None):
    '''Regions from include BED records, merged and split into chunks.

    Units come out in header order, then coordinate order.
    '''
    trees = merge_intervals(resolve_records(records, header, warned))
    for tid in sorted(trees):
        for interval in sorted(trees[tid]):
            yield from chunk(tid, interval.begin, interval.end, chunksize)


def process_regions(processor, regions, threads):
    '''Run processor.process_region on every region using a pool of threads.

    Yields the list of records of each region in the order the regions
    were given. The first failing region stops the run: its exception is
    raised here and regions not yet started are cancelled.
    '''
    max_in_flight = max(1, threads) * UNITS_PER_THREAD
    pending = deque()
    with ThreadPoolExecutor(max_workers=max(1, threads)) as executor:
        try:
            for region in regions:
                logging.debug(f"Dispatching region {region.tid}:{region.start}-{region.stop}")
                pending.append(executor.submit(processor.process_region, *region))
                if len(pending) >= max_in_flight:
                    yield pending.popleft().result()
            while pending:
                yield pending.popleft().result()
        finally:
            for future in pending:
                future.cancel()
