"""
Command Lexer - Template tokenization into shell words

OBJECTIVE: Turn a command template such as

    sort $path/$name.$ext "$title" 'literal $text'

into an ordered list of words, each word an ordered list of LITERAL and
INTERPOLATION tokens. No value is converted or split here: that is the
ArgumentExpander's job.

============================================================================
QUOTING RULES
============================================================================

    unquoted       whitespace splits words, backslash escapes any char,
                   backslash-newline is a line continuation
    '...'          everything literal, no interpolation, no escapes
    "..."          no splitting, $name interpolates, backslash escapes
                   only $ " \\ and newline
    $name ${name}  interpolation site, value looked up in the values mapping

Adjacency binds: `$path/$name.$ext` is ONE word with three interpolation
sites and two literal separators.

============================================================================
ERRORS
============================================================================

Every malformed template raises TemplateSyntaxError (a BuildError) with the
offending position, before anything is spawned:
    - unterminated single or double quote
    - trailing lone backslash
    - bare '$' / unterminated '${' / invalid name in '${...}'
    - marker with no supplied value
"""
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from .constants import (
    WORD_SEPARATORS, INTERPOLATION_MARKER, SINGLE_QUOTE, DOUBLE_QUOTE,
    ESCAPE, DOUBLE_QUOTE_ESCAPABLE,
)
from .errors import TemplateSyntaxError


# ============================================================================
# TOKEN TYPES
# ============================================================================

class TokenType(Enum):
    """Token types for the command lexer"""
    LITERAL = auto()        # Plain text (already unquoted/unescaped)
    INTERPOLATION = auto()  # Value supplied for a $name marker


@dataclass
class Token:
    """Token with type, value, and position"""
    type: TokenType
    value: Any      # str for LITERAL, the supplied object for INTERPOLATION
    pos: int        # Position in template
    name: Optional[str] = None  # Marker name (INTERPOLATION only)
    quoted: bool = False        # Appeared inside double quotes

    def __repr__(self):
        if self.type == TokenType.INTERPOLATION:
            return f"Token({self.type.name}, ${self.name}={self.value!r}, pos={self.pos})"
        return f"Token({self.type.name}, {self.value!r}, pos={self.pos})"


@dataclass
class Word:
    """
    One shell word: maximal unsplit run of tokens.

    Example: $name.txt -> [INTERPOLATION(name), LITERAL('.txt')]
    """
    pos: int
    tokens: List[Token] = field(default_factory=list)

    @property
    def interpolations(self) -> List[Token]:
        return [t for t in self.tokens if t.type == TokenType.INTERPOLATION]

    def surface(self) -> str:
        """Word text with each interpolation replaced by str(value)"""
        return ''.join(str(t.value) for t in self.tokens)

    def __repr__(self):
        return f"Word({self.tokens})"


# ============================================================================
# LEXER
# ============================================================================

class CommandLexer:
    """
    Lexer for command templates.

    Handles:
    - Quotes (single, double)
    - Escapes (\\)
    - Interpolation markers ($name, ${name})
    - Whitespace separation
    """

    def __init__(self, template: str, values: Optional[Mapping[str, Any]] = None):
        self.template = template
        self.values = values or {}
        self.pos = 0
        self.length = len(template)
        self._literal: List[str] = []
        self._literal_pos = 0

    def tokenize(self) -> List[Word]:
        """Tokenize template into list of words"""
        words = []

        while self.pos < self.length:
            if self._current() in WORD_SEPARATORS:
                self.pos += 1
                continue

            word = self._read_word()
            if word.tokens:
                words.append(word)

        return words

    def _current(self) -> str:
        """Get current character"""
        if self.pos >= self.length:
            return ''
        return self.template[self.pos]

    def _peek(self, offset: int = 1) -> str:
        """Peek ahead"""
        pos = self.pos + offset
        if pos >= self.length:
            return ''
        return self.template[pos]

    def _error(self, message: str, pos: Optional[int] = None) -> TemplateSyntaxError:
        return TemplateSyntaxError(message, self.template, self.pos if pos is None else pos)

    # ------------------------------------------------------------------------
    # Literal accumulation
    # ------------------------------------------------------------------------

    def _append_literal(self, text: str) -> None:
        if not self._literal:
            self._literal_pos = self.pos
        self._literal.append(text)

    def _flush_literal(self, word: Word, quoted: bool = False) -> None:
        if self._literal:
            word.tokens.append(Token(TokenType.LITERAL, ''.join(self._literal),
                                     self._literal_pos, quoted=quoted))
            self._literal = []

    # ------------------------------------------------------------------------
    # Word reading
    # ------------------------------------------------------------------------

    def _read_word(self) -> Word:
        """
        Read one word.

        Stops at unquoted whitespace. Quoted sections and interpolation sites
        directly adjacent to other text stay in the same word.
        """
        word = Word(pos=self.pos)
        has_quotes = False

        while self.pos < self.length:
            char = self._current()

            if char in WORD_SEPARATORS:
                break

            if char == ESCAPE:
                if self.pos + 1 >= self.length:
                    raise self._error("Trailing backslash")
                if self._peek() == '\n':
                    # Line continuation
                    self.pos += 2
                    continue
                self.pos += 1
                self._append_literal(self._current())
                self.pos += 1
                continue

            if char == SINGLE_QUOTE:
                has_quotes = True
                self._read_single_quoted()
                continue

            if char == DOUBLE_QUOTE:
                has_quotes = True
                self._read_double_quoted(word)
                continue

            if char == INTERPOLATION_MARKER:
                self._flush_literal(word)
                word.tokens.append(self._read_interpolation(quoted=False))
                continue

            self._append_literal(char)
            self.pos += 1

        self._flush_literal(word)

        # '' and "" still make an (empty) argument
        if has_quotes and not word.tokens:
            word.tokens.append(Token(TokenType.LITERAL, '', word.pos, quoted=True))

        return word

    def _read_single_quoted(self) -> None:
        """Read '...' - everything literal"""
        start = self.pos
        self.pos += 1
        while self.pos < self.length and self._current() != SINGLE_QUOTE:
            self._append_literal(self._current())
            self.pos += 1
        if self.pos >= self.length:
            raise self._error("Unterminated single quote", start)
        self.pos += 1  # Skip closing '

    def _read_double_quoted(self, word: Word) -> None:
        """Read "..." - no splitting, interpolation allowed"""
        start = self.pos
        self.pos += 1
        while self.pos < self.length and self._current() != DOUBLE_QUOTE:
            char = self._current()

            if char == ESCAPE and self._peek() in DOUBLE_QUOTE_ESCAPABLE:
                if self._peek() != '\n':
                    self.pos += 1
                    self._append_literal(self._current())
                    self.pos += 1
                else:
                    self.pos += 2
                continue

            if char == INTERPOLATION_MARKER:
                self._flush_literal(word, quoted=True)
                word.tokens.append(self._read_interpolation(quoted=True))
                continue

            self._append_literal(char)
            self.pos += 1

        if self.pos >= self.length:
            raise self._error("Unterminated double quote", start)
        self._flush_literal(word, quoted=True)
        self.pos += 1  # Skip closing "

    def _read_interpolation(self, quoted: bool) -> Token:
        """Read $name or ${name} and bind the supplied value"""
        start = self.pos
        self.pos += 1  # Skip $

        if self._current() == '{':
            close = self.template.find('}', self.pos)
            if close == -1:
                raise self._error("Unterminated '${'", start)
            name = self.template[self.pos + 1:close]
            if not name.isidentifier():
                raise self._error(f"Invalid interpolation name {name!r}", start)
            self.pos = close + 1
        else:
            char = self._current()
            if not (char == '_' or char.isalpha()):
                raise self._error("Bare '$' (escape it as \\$ or quote it with '$')", start)
            end = self.pos
            while end < self.length and (self.template[end] == '_' or self.template[end].isalnum()):
                end += 1
            name = self.template[self.pos:end]
            self.pos = end

        if name not in self.values:
            raise self._error(f"No value supplied for ${name}", start)

        return Token(TokenType.INTERPOLATION, self.values[name], start, name=name, quoted=quoted)


def tokenize_template(template: str, values: Optional[Mapping[str, Any]] = None) -> List[Word]:
    """
    Main entry point: tokenize a command template.

    Args:
        template: Command template string
        values: Mapping of marker name -> value

    Returns:
        List of Word

    Raises:
        TemplateSyntaxError: If the template is malformed
    """
    return CommandLexer(template, values).tokenize()
