import pysam
import pytest

from pilefilter.errors import SequenceFetchError, EncodingError
from pilefilter.sequence_cache import SequenceCache, PREFETCH_SIZE

from conftest import CHR1


class CountingStore(object):
    """In-memory stand-in for pysam.FastaFile that counts fetches."""

    def __init__(self, sequences):
        self.sequences = sequences
        self.calls = []

    def fetch(self, reference, start, end):
        self.calls.append((reference, start, end))
        return self.sequences[reference][start:end]


@pytest.fixture
def cache(reference_fasta):
    fasta = pysam.FastaFile(str(reference_fasta))
    yield SequenceCache(fasta)
    fasta.close()


def test_first_base(cache):
    bases = cache.fetch("chr1", 0, 0)
    assert len(bases) == 1
    assert bases == b"G"


def test_start_of_contig(cache):
    assert cache.fetch("chr1", 0, 9) == b"GGGCACAGCC"


def test_between(cache):
    assert cache.fetch("chr1", 4, 14) == b"ACAGCCTCACC"
    assert cache.fetch_string("chr1", 4, 14) == "ACAGCCTCACC"


def test_end_of_contig_is_truncated(cache):
    bases = cache.fetch("chr1", 110, 120)
    assert len(bases) == 10
    assert bases == b"CCCCTCCGTG"


def test_fetch_behind_window_refills(cache):
    assert cache.fetch("chr1", 110, 120) == b"CCCCTCCGTG"
    assert cache.fetch("chr1", 5, 9) == b"CAGCC"


def test_position_too_large(cache):
    position_too_large = 2**63 - 1
    with pytest.raises(SequenceFetchError, match="too large"):
        cache.fetch("chr1", position_too_large, position_too_large + 1)


def test_invalid_range(cache):
    with pytest.raises(SequenceFetchError):
        cache.fetch("chr1", 10, 5)
    with pytest.raises(SequenceFetchError):
        cache.fetch("chr1", -1, 5)


def test_unknown_chromosome(cache):
    with pytest.raises(SequenceFetchError):
        cache.fetch("chrUn", 0, 5)


def test_window_is_replaced_on_chromosome_change():
    store = CountingStore({"chr1": "A" * 50, "chr2": "C" * 50})
    cache = SequenceCache(store)
    assert cache.fetch("chr1", 3, 3) == b"A"
    assert cache.chromosome == "chr1"
    assert cache.fetch("chr2", 3, 3) == b"C"
    assert cache.chromosome == "chr2"
    assert cache.window_start == 3
    assert cache.window_bytes == b"C" * 47
    assert len(store.calls) == 2


def test_sequential_fetches_match_store_and_are_amortised():
    sequence = (CHR1 * 50)[:5000]
    store = CountingStore({"chr1": sequence})
    cache = SequenceCache(store)
    for pos in range(len(sequence)):
        assert cache.fetch("chr1", pos, pos) == sequence[pos].encode()
    # each refill covers PREFETCH_SIZE + 1 bases
    assert len(store.calls) == -(-len(sequence) // (PREFETCH_SIZE + 1))
    assert cache.store_fetches == len(store.calls)


def test_multi_base_fetches_match_store():
    sequence = (CHR1 * 40)[:3000]
    store = CountingStore({"chr1": sequence})
    cache = SequenceCache(store)
    for pos in range(0, len(sequence) - 5, 3):
        assert cache.fetch_string("chr1", pos, pos + 4) == sequence[pos:pos + 5]
    assert len(store.calls) <= 4


def test_request_past_window_end_refills():
    store = CountingStore({"chr1": "ACGT" * 1000})
    cache = SequenceCache(store, prefetch=10)
    cache.fetch("chr1", 0, 0)
    assert store.calls == [("chr1", 0, 11)]
    assert cache.fetch_string("chr1", 8, 20) == ("ACGT" * 1000)[8:21]
    assert len(store.calls) == 2
    assert cache.window_start == 8


def test_invalid_text_raises_encoding_error():
    store = CountingStore({"chr1": b"AC\xffT"})
    cache = SequenceCache(store)
    assert cache.fetch("chr1", 0, 3) == b"AC\xffT"
    with pytest.raises(EncodingError):
        cache.fetch_string("chr1", 0, 3)
