import threading
import time

import pytest

from pilefilter.exclusion import BedRecord
from pilefilter.regions import Region, bed_regions, genome_regions, process_regions


def test_genome_regions_are_chunked_in_header_order(header):
    regions = list(genome_regions(header, chunksize=50))
    assert regions == [Region(0, 0, 50), Region(0, 50, 100), Region(0, 100, 120),
                       Region(1, 0, 50), Region(1, 50, 60)]


def test_bed_regions_are_merged_sorted_and_chunked(header):
    records = [BedRecord("chr2", 0, 10, 1), BedRecord("chr1", 40, 60, 2),
               BedRecord("chr1", 0, 30, 3), BedRecord("chr1", 25, 45, 4),
               BedRecord("chrUn", 0, 10, 5)]
    regions = list(bed_regions(records, header, chunksize=20))
    assert regions == [Region(0, 0, 20), Region(0, 20, 40), Region(0, 40, 60),
                       Region(1, 0, 10)]


class SlowFirstProcessor(object):
    """Earlier regions finish last, so ordering has to come from dispatch order."""

    def __init__(self, fail_at=None):
        self.fail_at = fail_at
        self.threads = set()

    def process_region(self, tid, start, stop):
        self.threads.add(threading.get_ident())
        time.sleep(0.01 * (5 - start % 5))
        if start == self.fail_at:
            raise ValueError(f"region {start} failed")
        return [start]


def test_results_come_back_in_dispatch_order():
    regions = [Region(0, start, start + 1) for start in range(20)]
    processor = SlowFirstProcessor()
    results = list(process_regions(processor, regions, threads=4))
    assert results == [[start] for start in range(20)]
    assert len(processor.threads) > 1


def test_single_thread():
    regions = [Region(0, start, start + 1) for start in range(3)]
    assert list(process_regions(SlowFirstProcessor(), regions, threads=1)) == [[0], [1], [2]]


def test_failure_propagates():
    regions = [Region(0, start, start + 1) for start in range(10)]
    with pytest.raises(ValueError, match="region 3 failed"):
        list(process_regions(SlowFirstProcessor(fail_at=3), regions, threads=2))
