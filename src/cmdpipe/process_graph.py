"""
Process Graph - pure-data composition of commands

OBJECTIVE: Describe HOW commands are connected without starting anything.
No process exists until ExecutionEngine.spawn() consumes a graph, so graphs
can be built, inspected and recombined freely.

============================================================================
NODE TYPES
============================================================================

    Leaf(command)               - one external program
    Pipe(upstream, downstream)  - upstream stdout -> one OS pipe -> downstream stdin
    Group(members)              - members run concurrently, sharing the same
                                  stdin/stdout/stderr descriptors (fan-out/fan-in)

Each node carries Redirects(stdin, stdout, stderr) for its external boundary.
A stream without a redirect is inherited from the enclosing node, and at the
top of the graph from the host process.

============================================================================
REDIRECT TARGETS
============================================================================

    FileTarget(path, append)  - named file (stdin: read, out: truncate/append)
    BufferTarget(buffer)      - in-memory data (stdin) or sink (stdout/stderr)
    GraphTarget(graph)        - another graph's stdin (for stdout/stderr) or
                                stdout (for stdin)
    StreamTarget(fd_or_file)  - already open descriptor, e.g. DEVNULL
    PIPE                      - caller-visible endpoint (see command_io)

Plain values are coerced by as_target(): str/PathLike -> FileTarget,
bytes -> BufferTarget (stdin), bytearray/BytesIO -> BufferTarget,
Command/graph -> GraphTarget, int/real file -> StreamTarget.

============================================================================
BUILD-TIME RULES (BuildError)
============================================================================

- pipe(a, b) when a's stdout or b's stdin boundary is already redirected
- a second redirect on an already-redirected boundary
- the same node object used twice in one graph (would run a leaf twice
  or close a data-flow cycle)

============================================================================
USAGE
============================================================================

    >>> g = pipeline(cmd("cut -d: -f3 /etc/passwd"), cmd("sort -n"), cmd("tail -n5"))
    >>> print(format_graph_tree(g))
    Pipe:
      Pipe:
        Leaf: cut -d: -f3 /etc/passwd
        Leaf: sort -n
      Leaf: tail -n5

    >>> g = pipeline(cmd("echo world") & cmd("echo hello"), cmd("sort"), stderr="errs.txt")
"""
import os
import subprocess
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .command import Command, Composable
from .constants import STREAMS
from .errors import BuildError, RedirectConflictError


# ============================================================================
# REDIRECT TARGETS
# ============================================================================

class RedirectTarget:
    """Base class for redirect targets"""


@dataclass(frozen=True)
class FileTarget(RedirectTarget):
    """Named file"""
    path: str
    append: bool = False

    def __repr__(self):
        return f"{'>>' if self.append else '>'}{self.path}"


@dataclass(frozen=True, eq=False)
class BufferTarget(RedirectTarget):
    """
    In-memory buffer.

    stdin: bytes, bytearray, str (encoded utf-8) or a readable file-like.
    stdout/stderr: bytearray or writable file-like (BytesIO, text streams).
    """
    buffer: Any

    def __repr__(self):
        return f"buffer({type(self.buffer).__name__})"


@dataclass(frozen=True)
class GraphTarget(RedirectTarget):
    """Another process graph connected through an OS pipe"""
    graph: 'ProcessGraph'

    def __repr__(self):
        return f"graph({self.graph!r})"


@dataclass(frozen=True)
class StreamTarget(RedirectTarget):
    """Already open descriptor (int fd, object with fileno(), or DEVNULL)"""
    stream: Any

    def __repr__(self):
        if self.stream == subprocess.DEVNULL:
            return "devnull"
        return f"stream({self.stream!r})"


@dataclass(frozen=True)
class EndpointTarget(RedirectTarget):
    """Caller-visible pipe endpoint, exposed on the ExecutionHandle"""

    def __repr__(self):
        return "PIPE"


PIPE = EndpointTarget()
DEVNULL = StreamTarget(subprocess.DEVNULL)


def _fileno(value: Any) -> Optional[int]:
    """Real descriptor behind a file object, or None for in-memory streams"""
    fileno = getattr(value, 'fileno', None)
    if fileno is None:
        return None
    try:
        return fileno()
    except (OSError, ValueError):
        # io.UnsupportedOperation: BytesIO, StringIO, captured sys streams
        return None


def as_target(value: Any, stream: str, append: bool = False) -> Optional[RedirectTarget]:
    """
    Coerce a user-supplied redirect value for one stream.

    Args:
        value: File path, bytes, buffer, Command/graph, fd, file object or RedirectTarget
        stream: 'stdin', 'stdout' or 'stderr'
        append: For paths on stdout/stderr, open in append mode

    Raises:
        BuildError: If the value cannot be used for that stream
    """
    if stream not in STREAMS:
        raise BuildError(f"Unknown stream {stream!r}")
    if value is None:
        return None
    if isinstance(value, FileTarget) and stream == 'stdin' and value.append:
        raise BuildError("Append mode makes no sense for stdin")
    if isinstance(value, RedirectTarget):
        return value

    if isinstance(value, (str, os.PathLike)):
        path = os.fsdecode(os.fspath(value))
        return FileTarget(path, append=append and stream != 'stdin')

    if isinstance(value, (Command, ProcessGraph)):
        return GraphTarget(as_graph(value))

    if isinstance(value, bool):
        raise BuildError(f"Cannot redirect {stream} to {value!r}")

    if isinstance(value, int):
        return StreamTarget(value)

    if isinstance(value, (bytes, memoryview)):
        if stream != 'stdin':
            raise BuildError(f"Cannot write {stream} into immutable {type(value).__name__}; use bytearray")
        return BufferTarget(bytes(value))

    if isinstance(value, bytearray):
        return BufferTarget(value)

    if _fileno(value) is not None:
        return StreamTarget(value)

    if stream == 'stdin' and hasattr(value, 'read'):
        return BufferTarget(value)
    if stream != 'stdin' and hasattr(value, 'write'):
        return BufferTarget(value)

    raise BuildError(f"Cannot redirect {stream} to {type(value).__name__}")


@dataclass(frozen=True)
class Redirects:
    """Boundary redirects of one node"""
    stdin: Optional[RedirectTarget] = None
    stdout: Optional[RedirectTarget] = None
    stderr: Optional[RedirectTarget] = None

    def get(self, stream: str) -> Optional[RedirectTarget]:
        return getattr(self, stream)

    def items(self) -> List[Tuple[str, RedirectTarget]]:
        return [(s, self.get(s)) for s in STREAMS if self.get(s) is not None]

    def __bool__(self):
        return any(self.get(s) is not None for s in STREAMS)

    def __repr__(self):
        return ' '.join(f"{s}{t!r}" for s, t in self.items())


NO_REDIRECTS = Redirects()


# ============================================================================
# GRAPH NODES
# ============================================================================

class ProcessGraph(Composable):
    """Base class for graph nodes"""

    redirects: Redirects

    def leaves(self) -> List['Leaf']:
        return list(iter_leaves(self))


@dataclass(frozen=True)
class Leaf(ProcessGraph):
    """Single external-program invocation"""
    command: Command
    redirects: Redirects = field(default=NO_REDIRECTS)

    def __repr__(self):
        redir_str = f" [{self.redirects!r}]" if self.redirects else ''
        return f"Leaf({self.command}{redir_str})"


@dataclass(frozen=True)
class Pipe(ProcessGraph):
    """upstream stdout feeds downstream stdin through one OS pipe"""
    upstream: ProcessGraph
    downstream: ProcessGraph
    redirects: Redirects = field(default=NO_REDIRECTS)

    def __repr__(self):
        redir_str = f" [{self.redirects!r}]" if self.redirects else ''
        return f"Pipe({self.upstream!r} | {self.downstream!r}{redir_str})"


@dataclass(frozen=True)
class Group(ProcessGraph):
    """Members run concurrently sharing the same external streams"""
    members: Tuple[ProcessGraph, ...]
    redirects: Redirects = field(default=NO_REDIRECTS)

    def __repr__(self):
        redir_str = f" [{self.redirects!r}]" if self.redirects else ''
        return f"Group({' & '.join(repr(m) for m in self.members)}{redir_str})"


GraphLike = Union[Command, ProcessGraph]


def as_graph(value: Any) -> ProcessGraph:
    """Wrap a Command into a Leaf; pass graph nodes through"""
    if isinstance(value, ProcessGraph):
        return value
    if isinstance(value, Command):
        return Leaf(value)
    raise BuildError(f"Cannot use {type(value).__name__} as a process graph; build a Command with cmd()")


# ============================================================================
# TRAVERSAL
# ============================================================================

def iter_nodes(graph: ProcessGraph) -> Iterator[ProcessGraph]:
    """Every node of the graph, redirect target graphs included"""
    yield graph
    if isinstance(graph, Pipe):
        yield from iter_nodes(graph.upstream)
        yield from iter_nodes(graph.downstream)
    elif isinstance(graph, Group):
        for member in graph.members:
            yield from iter_nodes(member)
    for _, target in graph.redirects.items():
        if isinstance(target, GraphTarget):
            yield from iter_nodes(target.graph)


def iter_leaves(graph: ProcessGraph) -> Iterator[Leaf]:
    """
    Leaves in spawn order.

    Children first (upstream before downstream, members in order), then the
    graphs attached as redirect targets of the node (stdin, stdout, stderr).
    ExecutionEngine reports statuses in this same order.
    """
    if isinstance(graph, Leaf):
        yield graph
    elif isinstance(graph, Pipe):
        yield from iter_leaves(graph.upstream)
        yield from iter_leaves(graph.downstream)
    elif isinstance(graph, Group):
        for member in graph.members:
            yield from iter_leaves(member)
    for _, target in graph.redirects.items():
        if isinstance(target, GraphTarget):
            yield from iter_leaves(target.graph)


def boundary_target(graph: ProcessGraph, stream: str) -> Optional[RedirectTarget]:
    """
    Explicit redirect governing a graph's external stream, if any.

    A Pipe's external stdin is its upstream's, its external stdout its
    downstream's. Group members may redirect individually without claiming
    the group boundary.
    """
    own = graph.redirects.get(stream)
    if own is not None:
        return own
    if isinstance(graph, Pipe):
        if stream == 'stdin':
            return boundary_target(graph.upstream, 'stdin')
        if stream == 'stdout':
            return boundary_target(graph.downstream, 'stdout')
    return None


def _check_distinct(*graphs: ProcessGraph) -> None:
    """Each node object may appear only once in a graph"""
    seen: Dict[int, ProcessGraph] = {}
    for graph in graphs:
        for node in iter_nodes(graph):
            if id(node) in seen:
                raise BuildError(f"{node!r} is used more than once in the same graph; "
                                 f"build a separate node for each position")
            seen[id(node)] = node


# ============================================================================
# BUILDERS
# ============================================================================

def pipe(upstream: GraphLike, downstream: GraphLike) -> Pipe:
    """
    Connect upstream's stdout to downstream's stdin.

    Raises:
        RedirectConflictError: If either boundary is already redirected
    """
    up = as_graph(upstream)
    down = as_graph(downstream)

    if boundary_target(up, 'stdout') is not None:
        raise RedirectConflictError(f"Cannot pipe from {up!r}: stdout is already redirected")
    if boundary_target(down, 'stdin') is not None:
        raise RedirectConflictError(f"Cannot pipe into {down!r}: stdin is already redirected")

    _check_distinct(up, down)
    return Pipe(up, down)


def parallel(*members: GraphLike) -> Group:
    """
    Run members concurrently on shared streams.

    Nested groups without redirects of their own are flattened, so
    parallel(parallel(a, b), c) == parallel(a, b, c).
    """
    if not members:
        raise BuildError("parallel() needs at least one member")

    flat: List[ProcessGraph] = []
    for member in members:
        graph = as_graph(member)
        if isinstance(graph, Group) and not graph.redirects:
            flat.extend(graph.members)
        else:
            flat.append(graph)

    _check_distinct(*flat)
    return Group(tuple(flat))


def redirect(graph: GraphLike, stdin: Any = None, stdout: Any = None,
             stderr: Any = None, append: bool = False) -> ProcessGraph:
    """
    Attach redirects to a graph's external boundary.

    Args:
        graph: Command or graph node
        stdin/stdout/stderr: Redirect values (see as_target)
        append: Open file paths on stdout/stderr in append mode

    Returns:
        New node (the original is unchanged)

    Raises:
        RedirectConflictError: If a stream is already redirected
        BuildError: For unusable values or reused nodes
    """
    node = as_graph(graph)
    targets = {}
    for stream, value in (('stdin', stdin), ('stdout', stdout), ('stderr', stderr)):
        target = as_target(value, stream, append)
        if target is None:
            continue
        if boundary_target(node, stream) is not None:
            raise RedirectConflictError(f"{stream} of {node!r} is already redirected")
        if isinstance(target, GraphTarget):
            other = 'stdout' if stream == 'stdin' else 'stdin'
            if boundary_target(target.graph, other) is not None:
                raise RedirectConflictError(f"Cannot connect {stream} to {target.graph!r}: "
                                            f"its {other} is already redirected")
        targets[stream] = target

    if not targets:
        return node

    graph_targets = [t.graph for t in targets.values() if isinstance(t, GraphTarget)]
    _check_distinct(node, *graph_targets)

    return replace(node, redirects=replace(node.redirects, **targets))


def _is_path(value: Any) -> bool:
    return isinstance(value, (str, os.PathLike))


def pipeline(*stages: Any, stdin: Any = None, stdout: Any = None,
             stderr: Any = None, append: bool = False) -> ProcessGraph:
    """
    Chain stages with pipes, left to right, and attach redirects.

    A file path as first stage is read as stdin, a file path as last stage
    receives stdout:

        pipeline("in.txt", cmd("sort"), "out.txt")
        pipeline(cmd("do_work"), stdout=pipeline(cmd("sort"), "out.txt"), stderr="errs.txt")
    """
    items = list(stages)
    if not items:
        raise BuildError("pipeline() needs at least one stage")

    if len(items) > 1 and _is_path(items[0]):
        if stdin is not None:
            raise RedirectConflictError("stdin given both as first stage and as keyword")
        stdin = items.pop(0)
    if len(items) > 1 and _is_path(items[-1]):
        if stdout is not None:
            raise RedirectConflictError("stdout given both as last stage and as keyword")
        stdout = items.pop()

    graph = as_graph(items[0])
    for stage in items[1:]:
        graph = pipe(graph, stage)

    return redirect(graph, stdin=stdin, stdout=stdout, stderr=stderr, append=append)


# ============================================================================
# INSPECTION
# ============================================================================

def format_graph_tree(graph: ProcessGraph, indent: int = 0) -> str:
    """
    Render a graph as an indented tree.

    Useful for debugging and understanding graph structure.
    """
    prefix = "  " * indent
    lines = []

    if isinstance(graph, Leaf):
        lines.append(f"{prefix}Leaf: {graph.command}")
    elif isinstance(graph, Pipe):
        lines.append(f"{prefix}Pipe:")
        lines.append(format_graph_tree(graph.upstream, indent + 1))
        lines.append(format_graph_tree(graph.downstream, indent + 1))
    elif isinstance(graph, Group):
        lines.append(f"{prefix}Group:")
        for member in graph.members:
            lines.append(format_graph_tree(member, indent + 1))
    else:
        lines.append(f"{prefix}Unknown node: {type(graph)}")

    for stream, target in graph.redirects.items():
        if isinstance(target, GraphTarget):
            lines.append(f"{prefix}  Redirect {stream}:")
            lines.append(format_graph_tree(target.graph, indent + 2))
        else:
            lines.append(f"{prefix}  Redirect {stream}: {target!r}")

    return '\n'.join(lines)


def get_execution_plan(graph: ProcessGraph) -> dict:
    """
    Summarize what spawning a graph will do.

    Returns dict with:
        - type: Node type
        - commands: Program names in spawn order
        - leaf_count: Number of processes
        - pipe_count: Number of OS pipes between children
        - requires_pipe / requires_group / requires_redirect
    """
    nodes = list(iter_nodes(graph))
    leaves = list(iter_leaves(graph))
    redirect_count = sum(len(n.redirects.items()) for n in nodes)
    graph_targets = sum(1 for n in nodes for _, t in n.redirects.items() if isinstance(t, GraphTarget))
    pipe_count = sum(1 for n in nodes if isinstance(n, Pipe)) + graph_targets

    return {
        'type': type(graph).__name__,
        'commands': [leaf.command.program for leaf in leaves],
        'leaf_count': len(leaves),
        'pipe_count': pipe_count,
        'requires_pipe': pipe_count > 0,
        'requires_group': any(isinstance(n, Group) for n in nodes),
        'requires_redirect': redirect_count > 0,
    }
