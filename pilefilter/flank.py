'''
Module      : Flank
Description : Fixed width reference windows centred on a position.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX
'''

import logging
from pilefilter.errors import SequenceFetchError, EncodingError


PADDING = "."


def flank_window(cache, chrom, pos, flank):
    '''Reference bases from pos - flank to pos + flank, centred on pos.

    Positions before the start or past the end of the contig are filled with
    PADDING, so the result always has length 2 * flank + 1. If the
    reference cannot be read the whole window is PADDING.

    Arguments:
        cache: a SequenceCache
        chrom: reference sequence name
        pos: zero based centre position
        flank: number of bases either side of pos
    Result:
        string of length 2 * flank + 1
    '''
    width = 2 * flank + 1
    if flank == 0:
        base = fetch_or_empty(cache, chrom, pos, pos)
        return base if base else PADDING
    start = max(0, pos - flank)
    end = pos + flank + 1
    left_padding = PADDING * (flank - pos) if pos < flank else ""
    bases = fetch_or_empty(cache, chrom, start, end - 1)
    right_padding = PADDING * (width - len(left_padding) - len(bases))
    return left_padding + bases + right_padding


# end is inclusive
def fetch_or_empty(cache, chrom, start, end):
    try:
        return cache.fetch_string(chrom, start, end)
    except (SequenceFetchError, EncodingError) as error:
        logging.debug(f"Padding reference window {chrom}:{start}-{end}: {error}")
        return ""
