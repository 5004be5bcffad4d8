'''
Module      : Expression
Description : Evaluate user supplied Python expressions against reads and pileup positions.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX

Expressions are written in Python. They can either be a bare expression:

    read.mapping_quality > 20 and read.bq >= 13

or the body of a function with one or more return statements:

    return read.bq > 0 and read.distance_from_5prime == 0

The read expression sees the current alignment as `read`, the pile
expression sees the tallied position as `pile`. The views are only valid
for the duration of a single evaluation, because pysam reuses the
underlying pileup records as soon as the iterator moves to the next column.
'''

import ast
import builtins
import logging
import math
import textwrap
from pilefilter.errors import ExpressionCompileError, PositionExpressionError


READ_NAME = "read"
PILE_NAME = "pile"

# flag bits of interest, see the SAM specification
FLAG_PAIRED = 1
FLAG_REVERSE = 16
FORWARD_PAIR_FIRST = 99     # paired, proper pair, mate reverse, first in pair
FORWARD_PAIR_SECOND = 147   # paired, proper pair, reverse, second in pair
REVERSE_PAIR_FIRST = 83     # paired, proper pair, reverse, first in pair
REVERSE_PAIR_SECOND = 163   # paired, proper pair, mate reverse, second in pair

FORWARD_STRAND = 1
REVERSE_STRAND = -1
UNKNOWN_STRAND = 0

'''
Cigar operations in BAM file

M	BAM_CMATCH	0
I	BAM_CINS	1
D	BAM_CDEL	2
N	BAM_CREF_SKIP	3
S	BAM_CSOFT_CLIP	4
H	BAM_CHARD_CLIP	5

cigartuples is returned as a list of tuples of (operation, length).
'''
CIGAR_INS = 1
CIGAR_DEL = 2
CIGAR_SOFT_CLIP = 4
CIGAR_HARD_CLIP = 5

# pysam auxiliary tag type codes
INTEGER_TAG_TYPES = set("cCsSiI")
FLOAT_TAG_TYPES = set("fd")

SAFE_BUILTINS = {
    name: getattr(builtins, name)
    for name in ["abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
                 "float", "int", "isinstance", "len", "list", "map", "max", "min",
                 "range", "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip"]
}


def strand(flags):
    '''1 for forward, -1 for reverse, 0 when the flags do not say'''
    paired = flags & FLAG_PAIRED != 0
    is_forward = ((not paired and flags & FLAG_REVERSE == 0) or
                  (paired and (flags & FORWARD_PAIR_FIRST == FORWARD_PAIR_FIRST or
                               flags & FORWARD_PAIR_SECOND == FORWARD_PAIR_SECOND)))
    if is_forward:
        return FORWARD_STRAND
    is_reverse = ((not paired and flags & FLAG_REVERSE != 0) or
                  (paired and (flags & REVERSE_PAIR_FIRST == REVERSE_PAIR_FIRST or
                               flags & REVERSE_PAIR_SECOND == REVERSE_PAIR_SECOND)))
    if is_reverse:
        return REVERSE_STRAND
    return UNKNOWN_STRAND


def string_count(haystack, needle):
    '''Number of times the single character needle appears in haystack'''
    if len(needle) != 1:
        raise ValueError(f"string_count needs a single character, got '{needle}'")
    return haystack.count(needle)


def leading_soft_clips(cigar):
    for operation, length in cigar:
        if operation == CIGAR_HARD_CLIP:
            continue
        return length if operation == CIGAR_SOFT_CLIP else 0
    return 0


def trailing_soft_clips(cigar):
    return leading_soft_clips(reversed(cigar))


def n_proportion(bases, n_bases):
    if n_bases <= 0:
        return 0.0
    return sum(1 for base in bases if base in "Nn") / n_bases


def convert_tag_value(value, value_type):
    '''Convert a pysam auxiliary tag value into a plain Python value.

    Numeric arrays become lists, byte arrays become text.
    '''
    if value_type in INTEGER_TAG_TYPES:
        return int(value)
    elif value_type in FLOAT_TAG_TYPES:
        return float(value)
    elif value_type.startswith("B"):
        # arrays are reported with their element type, eg. 'Bi' or 'Bf'
        return list(value)
    elif isinstance(value, (bytes, bytearray)):
        # H (hex byte array) and anything else that arrives undecoded
        return bytes(value).decode("ascii", "replace")
    return value


class ReleasedViewError(RuntimeError):
    pass


class ReadView(object):
    '''Read-only view of one alignment at one pileup column.

    query_position is None when the read has no base at the column
    (a deletion or reference skip). The pysam record itself is never
    exposed, expressions only see the properties below.
    '''

    def __init__(self, alignment, query_position):
        self.__record = alignment
        self.qpos = query_position

    @property
    def _record(self):
        if self.__record is None:
            raise ReleasedViewError("read is only available while its expression is being evaluated")
        return self.__record

    def _release(self):
        self.__record = None

    @property
    def mapping_quality(self):
        return self._record.mapping_quality

    @property
    def flags(self):
        return self._record.flag

    @property
    def tid(self):
        return self._record.reference_id

    @property
    def start(self):
        return self._record.reference_start

    @property
    def stop(self):
        return self._record.reference_end

    @property
    def length(self):
        return self._record.query_length

    @property
    def insert_size(self):
        return self._record.template_length

    @property
    def qname(self):
        return self._record.query_name or ""

    @property
    def sequence(self):
        return self._record.query_sequence or ""

    @property
    def qualities(self):
        qualities = self._record.query_qualities
        return list(qualities) if qualities is not None else []

    @property
    def strand(self):
        return strand(self._record.flag)

    @property
    def is_reverse(self):
        return self._record.is_reverse

    @property
    def is_paired(self):
        return self._record.is_paired

    @property
    def is_proper_pair(self):
        return self._record.is_proper_pair

    @property
    def is_read1(self):
        return self._record.is_read1

    @property
    def is_read2(self):
        return self._record.is_read2

    @property
    def is_secondary(self):
        return self._record.is_secondary

    @property
    def is_supplementary(self):
        return self._record.is_supplementary

    @property
    def is_duplicate(self):
        return self._record.is_duplicate

    @property
    def is_qcfail(self):
        return self._record.is_qcfail

    @property
    def bq(self):
        if self.qpos is None:
            return -1
        return self._record.query_qualities[self.qpos]

    # Distances are measured from the biological ends of the read, so for
    # a reverse read the 5' end is the last base of the stored sequence.
    @property
    def distance_from_5prime(self):
        if self.qpos is None:
            return -1
        if self._record.is_reverse:
            return self.length - self.qpos
        return self.qpos

    @property
    def distance_from_3prime(self):
        if self.qpos is None:
            return -1
        if self._record.is_reverse:
            return self.qpos
        return self.length - self.qpos

    @property
    def soft_clips_5_prime(self):
        cigar = self._record.cigartuples or []
        if self._record.is_reverse:
            return trailing_soft_clips(cigar)
        return leading_soft_clips(cigar)

    @property
    def soft_clips_3_prime(self):
        cigar = self._record.cigartuples or []
        if self._record.is_reverse:
            return leading_soft_clips(cigar)
        return trailing_soft_clips(cigar)

    @property
    def indel_count(self):
        cigar = self._record.cigartuples or []
        return sum(1 for operation, _length in cigar if operation in (CIGAR_INS, CIGAR_DEL))

    @property
    def average_base_quality(self):
        qualities = self.qualities
        if not qualities:
            return 0.0
        return sum(qualities) / len(qualities)

    def n_proportion_5_prime(self, n_bases):
        sequence = self.sequence
        if self._record.is_reverse:
            return n_proportion(sequence[::-1][:n_bases], n_bases)
        return n_proportion(sequence[:n_bases], n_bases)

    def n_proportion_3_prime(self, n_bases):
        sequence = self.sequence
        if self._record.is_reverse:
            return n_proportion(sequence[:n_bases], n_bases)
        return n_proportion(sequence[::-1][:n_bases], n_bases)

    def tag(self, name):
        '''Value of the auxiliary tag, or None if the read does not have it'''
        try:
            value, value_type = self._record.get_tag(name, with_value_type=True)
        except KeyError:
            return None
        return convert_tag_value(value, value_type)


class PileView(object):
    '''Read-only view of a tallied pileup position and its reference window'''

    fields = ["ref_seq", "pos", "depth", "a", "c", "g", "t", "n", "ins", "del_",
              "ref_skip", "fail", "near_max_depth", "ref_base", "flank"]

    def __init__(self, position, ref_window=None):
        self._position = position
        self.flank = ref_window
        if ref_window:
            centre = ref_window[len(ref_window) // 2]
            self.ref_base = None if centre == "." else centre
        else:
            self.ref_base = None

    def __getattr__(self, name):
        # only called for names not found on the view itself
        if name in PileView.fields:
            return getattr(self._position, name)
        raise AttributeError(f"pile has no attribute '{name}'")

    def __getitem__(self, name):
        # pile["del"] for the keyword that cannot be written as pile.del
        if name == "del":
            name = "del_"
        if name not in PileView.fields:
            raise KeyError(name)
        return getattr(self, name)


def function_source(expression, function_name):
    '''Python source defining a zero argument function that runs the expression'''
    body = textwrap.dedent(expression).strip()
    try:
        ast.parse(body, mode="eval")
    except SyntaxError:
        pass
    else:
        body = "return " + body
    return f"def {function_name}():\n" + textwrap.indent(body, "    ") + "\n"


def private_attributes(tree):
    return sorted(set(node.attr for node in ast.walk(tree)
                      if isinstance(node, ast.Attribute) and node.attr.startswith("_")))


def compile_expression(expression, function_name, environment):
    '''Compile the expression into a function whose globals are environment.

    Attributes starting with an underscore are refused, so an expression
    can only reach the documented read and pile properties.
    '''
    source = function_source(expression, function_name)
    try:
        tree = ast.parse(source, f"<{function_name}>")
        private = private_attributes(tree)
        if private:
            raise ExpressionCompileError(expression, f"private attribute access: {', '.join(private)}")
        code = compile(tree, f"<{function_name}>", "exec")
        exec(code, environment)
    except (SyntaxError, ValueError) as error:
        raise ExpressionCompileError(expression, error)
    return environment.pop(function_name)


def new_environment():
    return {"__builtins__": dict(SAFE_BUILTINS), "math": math, "string_count": string_count}


class ExpressionBridge(object):
    '''Compiled read and pile expressions sharing one environment.

    A bridge belongs to a single scheduling unit and is never shared between
    threads, because evaluation binds names in its environment.
    '''

    def __init__(self, read_expression=None, pile_expression=None):
        self.environment = new_environment()
        self.read_expression = read_expression
        self.pile_expression = pile_expression
        self.read_function = None
        self.pile_function = None
        if read_expression is not None:
            self.read_function = compile_expression(read_expression, "read_expression", self.environment)
        if pile_expression is not None:
            self.pile_function = compile_expression(pile_expression, "pile_expression", self.environment)
        self.read_errors = 0

    def evaluate_read(self, alignment, query_position):
        if self.read_function is None:
            return True
        view = ReadView(alignment, query_position)
        self.environment[READ_NAME] = view
        try:
            return bool(self.read_function())
        except Exception as error:
            # a single bad read must not stop the region, it just fails the filter
            self.read_errors += 1
            logging.warning(f"Error evaluating expression for read {alignment.query_name}: {error!r}")
            return False
        finally:
            del self.environment[READ_NAME]
            view._release()

    def evaluate_position(self, position, ref_window=None):
        if self.pile_function is None:
            return True
        self.environment[PILE_NAME] = PileView(position, ref_window)
        try:
            return bool(self.pile_function())
        except Exception as error:
            raise PositionExpressionError(
                f"error evaluating expression '{self.pile_expression}' at {position.ref_seq}:{position.pos}: {error!r}")
        finally:
            del self.environment[PILE_NAME]
