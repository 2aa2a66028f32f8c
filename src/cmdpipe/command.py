"""
Command - immutable external program invocation

A Command is the resolved argument vector of ONE external program: the
program name followed by its arguments. It is never run through a shell.

USAGE PATTERN:
    >>> file = "/Volumes/External HD/data.csv"
    >>> c = cmd("sort $file", file=file)
    >>> list(c)
    ['sort', '/Volumes/External HD/data.csv']
    >>> c[1]
    '/Volumes/External HD/data.csv'

    >>> cmd("rm -f $names.$exts", names=["foo", "bar"], exts=["aux", "log"]).args
    ('rm', '-f', 'foo.aux', 'foo.log', 'bar.aux', 'bar.log')

Composition never mutates a Command, it wraps it in graph nodes:
    cmd("echo hello") | cmd("sort")          -> Pipe
    cmd("echo hello") & cmd("echo world")    -> Group
"""
import shlex
import logging
from typing import Any, Iterable, Iterator, Tuple, Union

from .argument_expander import ArgumentExpander, to_argument
from .command_lexer import tokenize_template
from .errors import BuildError


logger = logging.getLogger('Command')


class Composable:
    """
    Operator support shared by Command and process graph nodes.

        a | b  -> pipe(a, b)
        a & b  -> parallel(a, b)
    """

    __slots__ = ()

    def __or__(self, other):
        from .process_graph import pipe
        return pipe(self, other)

    def __and__(self, other):
        from .process_graph import parallel
        return parallel(self, other)


class Command(Composable):
    """
    Immutable ordered sequence of argument strings.

    Supports len(), indexing, iteration, equality and hashing. The
    ignore_status flag marks a command whose exit status never counts as a
    failure of the graph it runs in.
    """

    __slots__ = ('_args', '_ignore_status')

    def __init__(self, args: Iterable[Any], ignore_status: bool = False):
        if isinstance(args, (str, bytes)):
            raise BuildError("Command() takes an argument sequence; use cmd() to parse a template")
        resolved = tuple(to_argument(a) for a in args)
        if not resolved:
            raise BuildError("Command needs at least a program name")
        if not resolved[0]:
            raise BuildError("Empty program name")
        object.__setattr__(self, '_args', resolved)
        object.__setattr__(self, '_ignore_status', bool(ignore_status))

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def args(self) -> Tuple[str, ...]:
        return self._args

    @property
    def program(self) -> str:
        return self._args[0]

    @property
    def ignores_status(self) -> bool:
        return self._ignore_status

    def ignore_status(self) -> 'Command':
        """Copy of this command whose non-zero exit is not treated as failure"""
        return Command(self._args, ignore_status=True)

    def __len__(self) -> int:
        return len(self._args)

    def __getitem__(self, index: Union[int, slice]):
        return self._args[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self._args)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Command):
            return NotImplemented
        return self._args == other._args and self._ignore_status == other._ignore_status

    def __hash__(self) -> int:
        return hash((self._args, self._ignore_status))

    def __repr__(self) -> str:
        suffix = ', ignore_status' if self._ignore_status else ''
        return f"Command({shlex.join(self._args)}{suffix})"

    def __str__(self) -> str:
        return shlex.join(self._args)


def cmd(template: str, /, **values: Any) -> Command:
    """
    Build a Command from a template.

    Args:
        template: Command template ($name / ${name} markers, shell quoting)
        **values: Value for every marker. str/bytes/paths/numbers are scalars,
            other iterables are sequences expanded per word.

    Returns:
        Command

    Raises:
        TemplateSyntaxError: Malformed template
        BuildError: Empty command or uninterpolatable value
    """
    words = tokenize_template(template, values)
    if not words:
        raise BuildError(f"Empty command template: {template!r}")

    args = ArgumentExpander(logger=logger).expand(words)
    if not args:
        raise BuildError(f"Template {template!r} expanded to no arguments")

    return Command(args)
