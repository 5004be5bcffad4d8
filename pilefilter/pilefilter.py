'''
Module      : Main
Description : The main entry point for the program.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX

Walk the pileup of a BAM/CRAM file and write per-position base counts,
keeping only the reads and positions accepted by user supplied Python
expressions.
'''

from argparse import ArgumentParser
import sys
import csv
import logging
from importlib import metadata
import pysam
from pilefilter.errors import (SequenceFetchError, EncodingError, MalformedIntervalError,
                               ExpressionCompileError, PositionExpressionError)
from pilefilter.exclusion import read_bed_regions, resolve_records
from pilefilter.expression import ExpressionBridge
from pilefilter.regions import (genome_regions, bed_regions, process_regions,
                                DEFAULT_CHUNKSIZE)
from pilefilter.worker import RegionProcessor, open_alignments, DEFAULT_MAX_DEPTH


EXIT_FILE_IO_ERROR = 1
EXIT_COMMAND_LINE_ERROR = 2
EXIT_BAD_FILE_FORMAT = 3
EXIT_EXPRESSION_ERROR = 4
PROGRAM_NAME = "pilefilter"
DEFAULT_THREADS = 2
DEFAULT_FLANK = 0
OUTPUT_HEADER = ["#chrom", "pos0", "ref_base", "depth", "a", "c", "g", "t", "n"]
MISSING_REF_BASE = "."


try:
    PROGRAM_VERSION = metadata.version(PROGRAM_NAME)
except metadata.PackageNotFoundError:
    PROGRAM_VERSION = "undefined_version"


def exit_with_error(message, exit_status):
    '''Print an error message to stderr, prefixed by the program name and 'ERROR'.
    Then exit program with supplied exit status.

    Arguments:
        message: an error message as a string.
        exit_status: a positive integer representing the exit status of the
            program.
    '''
    logging.error(message)
    print("{} ERROR: {}, exiting".format(PROGRAM_NAME, message), file=sys.stderr)
    sys.exit(exit_status)


def parse_args(args=None):
    '''Parse command line arguments.
    Returns Options object with command line argument values as attributes.
    Will exit the program on a command line error.
    '''
    description = 'Per-position base counts from a BAM file, filtered by Python expressions on reads and positions'
    parser = ArgumentParser(description=description)
    parser.add_argument(
        'bam', metavar='BAM', type=str, help='Filepath of indexed BAM or CRAM file')
    parser.add_argument(
        'expression', nargs='?', metavar='EXPRESSION', type=str,
        help='Python expression evaluated for each read in the pileup, the read is available as `read`. Reads are kept when it is true. Default: keep all reads')
    parser.add_argument(
        '-t', '--threads', default=DEFAULT_THREADS, metavar='THREADS', type=int,
        help='Number of threads to use. Default: %(default)s')
    parser.add_argument(
        '-m', '--max-depth', default=DEFAULT_MAX_DEPTH, metavar='DEPTH', type=int,
        help='Maximum depth in the pileup. Default: %(default)s')
    parser.add_argument(
        '-b', '--bedfile', required=False, metavar='BED', type=str,
        help='Filepath of regions to process in BED format')
    parser.add_argument(
        '-f', '--fasta', required=False, metavar='FASTA', type=str,
        help='Filepath of the indexed reference FASTA file')
    parser.add_argument(
        '-e', '--exclude', required=False, metavar='BED', type=str,
        help='Filepath of regions to exclude in BED format')
    parser.add_argument(
        '--mate-fix', action='store_true',
        help='Adjust depth to not double count overlapping mates (slower than the default)')
    parser.add_argument(
        '-p', '--pile-expression', required=False, metavar='EXPRESSION', type=str,
        help='Python expression evaluated for each position, the position is available as `pile`. Positions are written when it is true')
    parser.add_argument(
        '-k', '--flank', default=DEFAULT_FLANK, metavar='BASES', type=int,
        help='Number of reference bases either side of the position to write in the ref_base column (requires --fasta). Default: %(default)s')
    parser.add_argument(
        '--chunksize', default=DEFAULT_CHUNKSIZE, metavar='BASES', type=int,
        help='Size of the genomic regions processed by each thread. Default: %(default)s')
    parser.add_argument(
        '--noheader', action='store_true', help='Suppress output header row')
    parser.add_argument('--version',
        action='version',
        version='%(prog)s ' + PROGRAM_VERSION)
    parser.add_argument('--log',
        metavar='LOG_FILE',
        type=str,
        help='record program progress in LOG_FILE')
    # positionals may follow options, eg. `pilefilter reads.bam --noheader EXPRESSION`
    return parser.parse_intermixed_args(args)


def init_logging(log_filename):
    '''If the log_filename is defined, then
    initialise the logging facility, and write log statement
    indicating the program has started, and also write out the
    command line from sys.argv

    Arguments:
        log_filename: either None, if logging is not required, or the
            string name of the log file to write to
    Result:
        None
    '''
    if log_filename is not None:
        logging.basicConfig(filename=log_filename,
                            level=logging.DEBUG,
                            filemode='w',
                            format='%(asctime)s %(levelname)s - %(message)s',
                            datefmt='%m-%d-%Y %H:%M:%S')
        logging.info('program started')
        logging.info('command line: %s', ' '.join(sys.argv))


def check_options(options):
    if options.threads < 1:
        exit_with_error(f"--threads must be at least 1, got {options.threads}", EXIT_COMMAND_LINE_ERROR)
    if options.max_depth < 1:
        exit_with_error(f"--max-depth must be at least 1, got {options.max_depth}", EXIT_COMMAND_LINE_ERROR)
    if options.flank < 0:
        exit_with_error(f"--flank must not be negative, got {options.flank}", EXIT_COMMAND_LINE_ERROR)
    if options.chunksize < 1:
        exit_with_error(f"--chunksize must be at least 1, got {options.chunksize}", EXIT_COMMAND_LINE_ERROR)
    if options.flank > 0 and options.fasta is None:
        logging.warning("--flank has no effect without --fasta")


# Compile the expressions once up front so that syntax errors are reported
# before any region is dispatched.
def check_expressions(options):
    try:
        ExpressionBridge(options.expression, options.pile_expression)
    except ExpressionCompileError as error:
        exit_with_error(str(error), EXIT_EXPRESSION_ERROR)


def read_header(options):
    try:
        with open_alignments(options.bam, options.fasta) as samfile:
            if not samfile.has_index():
                exit_with_error(f"BAM file is not indexed: {options.bam}", EXIT_FILE_IO_ERROR)
            # the header is copied, it must outlive the file
            return pysam.AlignmentHeader.from_dict(samfile.header.to_dict())
    except (OSError, ValueError) as error:
        exit_with_error(f"cannot open BAM file {options.bam}: {error}", EXIT_FILE_IO_ERROR)


def check_fasta(options):
    if options.fasta is not None:
        try:
            with pysam.FastaFile(options.fasta):
                pass
        except (OSError, ValueError) as error:
            exit_with_error(f"cannot open FASTA file {options.fasta}: {error}", EXIT_FILE_IO_ERROR)


def read_bed_file(filepath):
    try:
        return list(read_bed_regions(filepath))
    except OSError as error:
        exit_with_error(f"cannot read BED file {filepath}: {error}", EXIT_FILE_IO_ERROR)
    except MalformedIntervalError as error:
        exit_with_error(str(error), EXIT_BAD_FILE_FORMAT)


def get_exclude_records(options, header, warned):
    '''Read the exclude BED file and check every record against the BAM header.
    Unknown chromosomes are warned about here, once, and added to warned.
    '''
    if options.exclude is None:
        return None
    records = read_bed_file(options.exclude)
    try:
        for _triple in resolve_records(records, header, warned):
            pass
    except MalformedIntervalError as error:
        exit_with_error(f"{error} in {options.exclude}", EXIT_BAD_FILE_FORMAT)
    return records


def get_regions(options, header):
    if options.bedfile is None:
        return list(genome_regions(header, options.chunksize))
    records = read_bed_file(options.bedfile)
    try:
        return list(bed_regions(records, header, options.chunksize))
    except MalformedIntervalError as error:
        exit_with_error(f"{error} in {options.bedfile}", EXIT_BAD_FILE_FORMAT)


def write_header(writer, options):
    if not options.noheader:
        writer.writerow(OUTPUT_HEADER)


def write_output_row(writer, record):
    position = record.position
    ref_base = record.ref_window if record.ref_window is not None else MISSING_REF_BASE
    writer.writerow([position.ref_seq, position.pos, ref_base, position.depth,
                     position.a, position.c, position.g, position.t, position.n])


def process_bam(options, outfile=None):
    check_options(options)
    check_expressions(options)
    check_fasta(options)
    header = read_header(options)
    warned = set()
    exclude_records = get_exclude_records(options, header, warned)
    regions = get_regions(options, header)
    logging.info(f"Number of regions to process: {len(regions)}")
    processor = RegionProcessor(
        options.bam,
        read_expression=options.expression,
        pile_expression=options.pile_expression,
        max_depth=options.max_depth,
        exclude_records=exclude_records,
        mate_fix=options.mate_fix,
        fasta_path=options.fasta,
        flank=options.flank,
        warned=warned)
    if outfile is None:
        outfile = sys.stdout
    writer = csv.writer(outfile, delimiter="\t", lineterminator="\n")
    write_header(writer, options)
    num_rows = 0
    try:
        for records in process_regions(processor, regions, options.threads):
            for record in records:
                write_output_row(writer, record)
                num_rows += 1
    except PositionExpressionError as error:
        exit_with_error(str(error), EXIT_EXPRESSION_ERROR)
    except ExpressionCompileError as error:
        exit_with_error(str(error), EXIT_EXPRESSION_ERROR)
    except MalformedIntervalError as error:
        exit_with_error(str(error), EXIT_BAD_FILE_FORMAT)
    except (SequenceFetchError, EncodingError, OSError) as error:
        exit_with_error(str(error), EXIT_FILE_IO_ERROR)
    logging.info(f"Number of positions written: {num_rows}")
    return num_rows


def main():
    "Orchestrate the execution of the program"
    options = parse_args()
    init_logging(options.log)
    process_bam(options)
    logging.info("Completed")


# If this script is run from the command line then call the main function.
if __name__ == '__main__':
    main()
