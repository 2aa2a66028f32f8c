"""
Argument Expander - Words to the final argument vector

RESPONSIBILITIES:
- Classify every interpolated value as SCALAR or SEQUENCE
- Convert values to argument strings (str, bytes, os.PathLike, numbers)
- Expand each word into one-or-more arguments (Cartesian product over sequences)

NOT RESPONSIBLE FOR:
- Quoting/splitting the template (that's CommandLexer)
- Building Command objects (that's command.cmd)

EXPANSION ALGORITHM (per word):

    partials = [""]
    LITERAL / SCALAR  -> append text to every partial      (count unchanged)
    SEQUENCE          -> partial + element for every pair  (count *= len)

    $names.$exts  with names=[foo,bar], exts=[aux,log]
        [""] -> [foo, bar] -> [foo., bar.] -> [foo.aux, foo.log, bar.aux, bar.log]

The leftmost sequence is the outermost loop, so it varies slowest. A scalar
is appended verbatim: embedded spaces or shell metacharacters never split it.
Inside double quotes a sequence is joined with single spaces and behaves as
a scalar.
"""
import os
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Dict, List, Sequence, Tuple

from .constants import QUOTED_SEQUENCE_JOINER
from .command_lexer import Token, TokenType, Word
from .errors import BuildError


SCALAR = 'scalar'
SEQUENCE = 'sequence'

_SCALAR_TYPES = (str, bytes, bytearray, os.PathLike)


def classify_value(value: Any) -> str:
    """
    Classify an interpolated value.

    Returns:
        SCALAR or SEQUENCE

    Raises:
        BuildError: For mappings (iteration order has no argument meaning)
    """
    if isinstance(value, _SCALAR_TYPES):
        return SCALAR
    if isinstance(value, Mapping):
        raise BuildError(f"Cannot interpolate a mapping ({type(value).__name__}); "
                         f"pass its keys, values or items explicitly")
    if isinstance(value, Iterable):
        return SEQUENCE
    return SCALAR


def to_argument(value: Any) -> str:
    """Convert a scalar value to its argument string"""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return os.fsdecode(bytes(value))
    if isinstance(value, os.PathLike):
        return os.fsdecode(os.fspath(value))
    return str(value)


class ArgumentExpander:
    """
    Expands lexed words into the flat argument vector of one command.

    Sequence values are materialized once per expand() call, so a generator
    interpolated at two sites yields the same elements at both.
    """

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger('ArgumentExpander')
        self._materialized: Dict[int, List[str]] = {}

    def expand(self, words: Sequence[Word]) -> Tuple[str, ...]:
        """
        Expand all words in order.

        Args:
            words: Output of CommandLexer.tokenize()

        Returns:
            Tuple of argument strings
        """
        self._materialized = {}
        args: List[str] = []
        try:
            for word in words:
                expanded = self.expand_word(word)
                if len(expanded) != 1:
                    self.logger.debug(f"Word at pos {word.pos} expanded to {len(expanded)} arguments")
                args.extend(expanded)
        finally:
            self._materialized = {}
        return tuple(args)

    def expand_word(self, word: Word) -> List[str]:
        """Expand one word into zero or more arguments"""
        partials = ['']

        for token in word.tokens:
            if token.type == TokenType.LITERAL:
                partials = [p + token.value for p in partials]
                continue

            if token.quoted:
                text = self._quoted_text(token)
                partials = [p + text for p in partials]
                continue

            if classify_value(token.value) == SCALAR:
                text = to_argument(token.value)
                partials = [p + text for p in partials]
                continue

            elements = self._elements(token)
            partials = [p + element for p in partials for element in elements]

        return partials

    def _elements(self, token: Token) -> List[str]:
        key = id(token.value)
        if key not in self._materialized:
            self._materialized[key] = [to_argument(v) for v in token.value]
        return self._materialized[key]

    def _quoted_text(self, token: Token) -> str:
        if classify_value(token.value) == SCALAR:
            return to_argument(token.value)
        return QUOTED_SEQUENCE_JOINER.join(self._elements(token))


def expand_words(words: Sequence[Word]) -> Tuple[str, ...]:
    """Convenience wrapper around ArgumentExpander().expand()"""
    return ArgumentExpander().expand(words)
