'''
Module      : Errors
Description : Exceptions raised while filtering pileups.
Copyright   : (c) Bernie Pope, 18 Oct 2026
License     : MIT
Maintainer  : bjpope@unimelb.edu.au
Portability : POSIX
'''


class PileFilterError(Exception):
    '''Base class for all errors raised by pilefilter'''


class SequenceFetchError(PileFilterError):
    '''The reference sequence could not be fetched for the requested range'''


class EncodingError(PileFilterError):
    '''Reference bytes could not be decoded as text'''


class MalformedIntervalError(PileFilterError):
    '''A BED record could not be interpreted as an interval'''


class ExpressionCompileError(PileFilterError):
    '''A user expression could not be compiled into a function'''

    def __init__(self, expression, reason):
        self.expression = expression
        self.reason = reason
        super().__init__(f"cannot compile expression '{expression}': {reason}")


class PositionExpressionError(PileFilterError):
    '''The pile expression failed while being evaluated against a position'''
