"""
cmdpipe - external commands without a shell

Main components:
- cmd / Command: Template -> immutable argument vector (no shell parsing at run time)
- CommandLexer: Template tokenization (quotes, escapes, $name markers)
- ArgumentExpander: Scalar/sequence interpolation, Cartesian word expansion
- process_graph: Pipe / Group / redirect composition, pure data
- ExecutionEngine: Subprocess management (single Popen point)
- command_io: run / read / read_text / read_lines / success / opened
"""

from .command import Command, cmd
from .command_lexer import CommandLexer, Token, TokenType, Word, tokenize_template
from .argument_expander import ArgumentExpander
from .process_graph import (
    Leaf, Pipe, Group, Redirects,
    FileTarget, BufferTarget, GraphTarget, StreamTarget, PIPE, DEVNULL,
    pipe, parallel, redirect, pipeline,
    iter_leaves, format_graph_tree, get_execution_plan,
)
from .execution_engine import ExecutionEngine, ExecutionHandle, ProcessStatus
from .command_io import (
    run, read, read_text, read_lines, success, opened, open_process,
    get_default_engine, set_default_engine,
)
from .errors import (
    CommandError, BuildError, TemplateSyntaxError, RedirectConflictError,
    SpawnError, SpawnFailure, ProcessFailedError,
)

__all__ = [
    'Command',
    'cmd',
    'CommandLexer',
    'Token',
    'TokenType',
    'Word',
    'tokenize_template',
    'ArgumentExpander',
    'Leaf',
    'Pipe',
    'Group',
    'Redirects',
    'FileTarget',
    'BufferTarget',
    'GraphTarget',
    'StreamTarget',
    'PIPE',
    'DEVNULL',
    'pipe',
    'parallel',
    'redirect',
    'pipeline',
    'iter_leaves',
    'format_graph_tree',
    'get_execution_plan',
    'ExecutionEngine',
    'ExecutionHandle',
    'ProcessStatus',
    'run',
    'read',
    'read_text',
    'read_lines',
    'success',
    'opened',
    'open_process',
    'get_default_engine',
    'set_default_engine',
    'CommandError',
    'BuildError',
    'TemplateSyntaxError',
    'RedirectConflictError',
    'SpawnError',
    'SpawnFailure',
    'ProcessFailedError',
]
