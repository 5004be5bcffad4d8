'''
Module      : SequenceCache
Description : Windowed cache over an indexed reference sequence.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX

Pileup columns are visited in increasing order within a chromosome, so
single base lookups are served from a window that slides forward. A miss
reads PREFETCH_SIZE bases ahead, which turns one faidx access per base into
roughly one per thousand bases.

All coordinates are zero based. Unlike pysam.FastaFile.fetch, the end
coordinate of SequenceCache.fetch is inclusive.
'''

import logging
from pilefilter.errors import SequenceFetchError, EncodingError


PREFETCH_SIZE = 1000
# largest coordinate htslib can represent (hts_pos_t is a signed 64 bit int)
MAX_POSITION = 2**63 - 1


class SequenceCache(object):
    def __init__(self, store, prefetch=PREFETCH_SIZE):
        # store is anything with fetch(reference, start, end), such as pysam.FastaFile
        self.store = store
        self.prefetch = prefetch
        self.chromosome = ""
        self.window_start = 0
        self.window_bytes = b""
        self.store_fetches = 0

    def fetch(self, chrom, start, end):
        '''Return the bases of chrom in [start, end] as bytes.

        Arguments:
            chrom: reference sequence name
            start: zero based first position
            end: zero based last position (inclusive)
        Result:
            bytes, possibly shorter than requested at the end of the contig
        '''
        if start < 0 or end < start:
            raise SequenceFetchError(f"invalid range {chrom}:{start}-{end}")
        if end >= MAX_POSITION:
            raise SequenceFetchError(f"position too large {chrom}:{start}-{end}")
        if (chrom == self.chromosome and start >= self.window_start and
                end < self.window_start + len(self.window_bytes)):
            offset = start - self.window_start
            return self.window_bytes[offset:offset + end - start + 1]
        self.fill_window(chrom, start, min(max(end, start + self.prefetch), MAX_POSITION - 1))
        return self.window_bytes[0:min(len(self.window_bytes), end - start + 1)]

    def fetch_string(self, chrom, start, end):
        bases = self.fetch(chrom, start, end)
        try:
            return bases.decode("ascii")
        except UnicodeDecodeError as error:
            raise EncodingError(f"reference bases at {chrom}:{start}-{end} are not valid text: {error}")

    # end is inclusive
    def fill_window(self, chrom, start, end):
        logging.debug(f"Reading reference window {chrom}:{start}-{end}")
        self.store_fetches += 1
        try:
            sequence = self.store.fetch(chrom, start, end + 1)
        except (KeyError, ValueError, IndexError, OSError, OverflowError) as error:
            raise SequenceFetchError(f"cannot fetch {chrom}:{start}-{end}: {error}")
        if isinstance(sequence, str):
            sequence = sequence.encode("utf-8", "surrogateescape")
        self.chromosome = chrom
        self.window_start = start
        self.window_bytes = bytes(sequence)
