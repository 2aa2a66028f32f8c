"""
Execution Engine - Single point for all subprocess operations

ARCHITECTURE:
This is the SINGLE SUBPROCESS CREATION POINT for cmdpipe.
ALL processes are started here (no subprocess.Popen() elsewhere).

Position in hierarchy:
    command_io (run / read / opened ...)
           ↓
        ExecutionEngine.spawn(graph) ← THIS MODULE
           ↓
        subprocess.Popen(argv, shell=False)  x  one per Leaf
           ↓
        ExecutionHandle (wait / check / communicate / close)

RESPONSIBILITIES:
1. Walk a process graph and resolve every Leaf's stdin/stdout/stderr
2. Allocate one os.pipe() per Pipe edge BEFORE spawning either side
3. Spawn each Leaf directly (argv list, never a shell)
4. Start stream pumps for in-memory buffers
5. Spawn failures: attempt every leaf, then kill/reap the ones that started
   and raise one SpawnError listing all failures
6. Close the parent's copy of every child-side descriptor
7. Hand processes, caller endpoints and pumps to an ExecutionHandle

NOT RESPONSIBLE FOR:
- Parsing templates (CommandLexer / ArgumentExpander)
- Graph composition rules (process_graph)
- Deciding when to raise on exit status (command_io / ExecutionHandle.check)

DESCRIPTOR OWNERSHIP:
    internal Pipe edge     both ends go to children, parent closes both after spawn
    BufferTarget           child end closed after spawn, other end owned by a StreamPump
    PIPE endpoint          child end closed after spawn, other end owned by the handle
    FileTarget             opened by the engine, closed after spawn
    StreamTarget           owned by the caller, never closed here

Children are started with close_fds=True, so a child only ever holds its own
three standard descriptors. That is what lets a reader see EOF as soon as
every writer of a pipe has exited.

CONFIGURATION:
Working directory and environment are explicit engine configuration, not
process-wide state:

    engine = ExecutionEngine(working_dir="/srv/data", env={'LC_ALL': 'C'})
    handle = engine.spawn(cmd("sort -u names.txt"))
    handle.check()

USAGE PATTERN:
    handle = engine.spawn(graph, stdout=PIPE)
    with handle:
        data = handle.stdout.read()     # drain BEFORE waiting
    handle.check()                      # raises ProcessFailedError
"""
import os
import io
import time
import codecs
import logging
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .command import Command
from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_ENCODING, STREAMS, TERMINATE_GRACE_PERIOD
from .errors import (
    BuildError, SpawnError, SpawnFailure, ProcessFailedError, describe_exit,
    NOT_FOUND, PERMISSION_DENIED, OS_ERROR,
)
from .process_graph import (
    ProcessGraph, Leaf, Pipe, Group,
    RedirectTarget, FileTarget, BufferTarget, GraphTarget, StreamTarget, EndpointTarget,
    iter_nodes, redirect,
)


# ============================================================================
# PROCESS STATUS
# ============================================================================

@dataclass
class ProcessStatus:
    """
    Exit status of one leaf.

    returncode follows subprocess: negative means killed by that signal,
    None means still running.
    """
    command: Command
    pid: Optional[int]
    returncode: Optional[int] = None
    ignored: bool = False   # Command.ignore_status() was set

    @property
    def running(self) -> bool:
        return self.returncode is None

    @property
    def signal(self) -> Optional[int]:
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    @property
    def terminated_by_signal(self) -> bool:
        return self.signal is not None

    @property
    def exit_code(self) -> Optional[int]:
        """Numeric exit code, None if running or killed by a signal"""
        if self.returncode is None or self.returncode < 0:
            return None
        return self.returncode

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def failed(self) -> bool:
        """Finished unsuccessfully and not ignored"""
        return not self.ignored and self.returncode is not None and self.returncode != 0

    def __str__(self) -> str:
        ignored = ", ignored" if self.ignored else ""
        return f"{self.command} [pid {self.pid}, {describe_exit(self.returncode, self.signal)}{ignored}]"


# ============================================================================
# STREAM PUMP
# ============================================================================

class StreamPump:
    """
    Background thread moving bytes between a pipe and an in-memory buffer.

    DRAIN: pipe read end -> buffer   (stdout/stderr BufferTarget)
    FEED:  buffer -> pipe write end  (stdin BufferTarget, ExecutionHandle.communicate)

    The pump owns its descriptor and closes it when done. Exceptions are kept
    in self.error and re-raised by ExecutionHandle.wait(). A feeder whose
    reader went away gets BrokenPipeError like any other write failure; with
    ignore_broken_pipe it just stops instead (consumers such as `head` that
    stop reading on purpose).
    """

    DRAIN = 'drain'
    FEED = 'feed'

    def __init__(self, direction: str, stream: Any, buffer: Any, name: str = '',
                 logger: logging.Logger = None, chunk_size: int = DEFAULT_CHUNK_SIZE,
                 encoding: str = DEFAULT_ENCODING, ignore_broken_pipe: bool = False):
        """
        Args:
            direction: DRAIN or FEED
            stream: int fd or binary file object (owned by the pump)
            buffer: Source (FEED) or sink (DRAIN)
            name: Label for logs and thread name
            ignore_broken_pipe: Stop quietly when the reader goes away
        """
        self.direction = direction
        self.stream = stream
        self.buffer = buffer
        self.name = name or direction
        self.logger = logger or logging.getLogger('StreamPump')
        self.chunk_size = chunk_size
        self.encoding = encoding
        self.ignore_broken_pipe = ignore_broken_pipe
        self.error: Optional[BaseException] = None
        self.bytes_moved = 0
        self._thread: Optional[threading.Thread] = None
        self._decoder = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name=f"cmdpipe-{self.direction}-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def close(self) -> None:
        """Release the descriptor of a pump that never started"""
        if self._thread is None and self.stream is not None:
            stream, self.stream = self.stream, None
            if isinstance(stream, int):
                os.close(stream)
            else:
                stream.close()

    def _open(self, mode: str):
        stream, self.stream = self.stream, None
        if isinstance(stream, int):
            return os.fdopen(stream, mode, buffering=0 if mode == 'rb' else -1)
        return stream

    def _run(self) -> None:
        try:
            if self.direction == self.DRAIN:
                self._drain()
            else:
                self._feed()
            self.logger.debug(f"[{self.name}] {self.direction} done, {self.bytes_moved} bytes")
        except BrokenPipeError as e:
            if self.ignore_broken_pipe:
                self.logger.debug(f"[{self.name}] reader closed its end after {self.bytes_moved} bytes")
            else:
                self.logger.error(f"[{self.name}] reader closed its end after {self.bytes_moved} bytes")
                self.error = e
        except Exception as e:
            self.logger.error(f"[{self.name}] {self.direction} failed: {e}")
            self.error = e

    def _drain(self) -> None:
        with self._open('rb') as source:
            while True:
                chunk = source.read(self.chunk_size)
                if not chunk:
                    break
                self._write_buffer(chunk)
                self.bytes_moved += len(chunk)
        if self._decoder is not None:
            tail = self._decoder.decode(b'', final=True)
            if tail:
                self.buffer.write(tail)

    def _write_buffer(self, chunk: bytes) -> None:
        if isinstance(self.buffer, bytearray):
            self.buffer.extend(chunk)
        elif isinstance(self.buffer, io.TextIOBase):
            if self._decoder is None:
                self._decoder = codecs.getincrementaldecoder(self.encoding)(errors='replace')
            self.buffer.write(self._decoder.decode(chunk))
        else:
            self.buffer.write(chunk)

    def _feed(self) -> None:
        with self._open('wb') as sink:
            for chunk in self._source_chunks():
                sink.write(chunk)
                self.bytes_moved += len(chunk)

    def _source_chunks(self) -> Iterator[bytes]:
        source = self.buffer
        if isinstance(source, str):
            source = source.encode(self.encoding)
        if isinstance(source, (bytes, bytearray, memoryview)):
            view = memoryview(source)
            for start in range(0, len(view), self.chunk_size):
                yield bytes(view[start:start + self.chunk_size])
            return
        while True:
            chunk = source.read(self.chunk_size)
            if not chunk:
                return
            yield chunk.encode(self.encoding) if isinstance(chunk, str) else chunk


# ============================================================================
# EXECUTION HANDLE
# ============================================================================

def _reap_in_background(processes: List[subprocess.Popen], logger: logging.Logger) -> None:
    """Wait for abandoned children from a daemon thread so none is left a zombie"""
    def reap():
        for process in processes:
            process.wait()
            signal_number = -process.returncode if process.returncode < 0 else None
            logger.debug(f"Reaped abandoned pid {process.pid} ({describe_exit(process.returncode, signal_number)})")

    threading.Thread(target=reap, name='cmdpipe-reaper', daemon=True).start()


class ExecutionHandle:
    """
    Live processes of one spawned graph.

    Attributes:
        graph: The graph that was spawned
        stdin: Binary writer into the graph's stdin (only if PIPE was requested)
        stdout: Binary reader of the graph's stdout (only if PIPE was requested)
        stderr: Binary reader of the graph's stderr (only if PIPE was requested)

    Lifecycle: created by ExecutionEngine.spawn(); wait()/check()/close()
    reap the children; endpoints are closed by close(), by the context
    manager, or when the handle is garbage collected.

    Closing the stdin endpoint flushes buffered writes. If the child already
    exited without reading them the BrokenPipeError reaches the caller of
    wait()/close(), unless the engine was built with ignore_broken_pipe.
    """

    def __init__(self, graph: ProcessGraph, processes: List[Tuple[Command, subprocess.Popen]],
                 pumps: List[StreamPump] = None, endpoints: Dict[str, Any] = None,
                 logger: logging.Logger = None, chunk_size: int = DEFAULT_CHUNK_SIZE,
                 ignore_broken_pipe: bool = False):
        self.graph = graph
        self._processes = processes
        self._pumps = pumps or []
        endpoints = endpoints or {}
        self.stdin = endpoints.get('stdin')
        self.stdout = endpoints.get('stdout')
        self.stderr = endpoints.get('stderr')
        self.logger = logger or logging.getLogger('ExecutionHandle')
        self.chunk_size = chunk_size
        self.ignore_broken_pipe = ignore_broken_pipe
        self.stderr_output: Optional[bytes] = None  # Filled by communicate()

    def __repr__(self):
        state = 'running' if self.running else 'done'
        return f"ExecutionHandle({len(self._processes)} process(es), {state})"

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def commands(self) -> List[Command]:
        return [command for command, _ in self._processes]

    @property
    def pids(self) -> List[int]:
        return [process.pid for _, process in self._processes]

    @property
    def processes(self) -> List[subprocess.Popen]:
        return [process for _, process in self._processes]

    def poll(self) -> bool:
        """True once every process has exited (non-blocking)"""
        return all(process.poll() is not None for _, process in self._processes)

    @property
    def running(self) -> bool:
        return not self.poll()

    @property
    def statuses(self) -> List[ProcessStatus]:
        """Current per-leaf status, in spawn order (does not wait)"""
        return [
            ProcessStatus(command, process.pid, process.returncode, command.ignores_status)
            for command, process in self._processes
        ]

    @property
    def exitstatus(self) -> List[Optional[int]]:
        """Per-leaf returncodes after waiting (negative = killed by signal)"""
        return [status.returncode for status in self.wait()]

    @property
    def success(self) -> bool:
        """Wait, then True if no leaf failed"""
        return not any(status.failed for status in self.wait())

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def wait(self, timeout: Optional[float] = None) -> List[ProcessStatus]:
        """
        Block until every process exits, then join the stream pumps.

        The caller stdin endpoint (if any) is closed first, so a child reading
        it sees EOF. The stdout endpoint is NOT drained here: read it before
        waiting when output may exceed the pipe buffer.

        Raises:
            subprocess.TimeoutExpired: If timeout elapses first
            BrokenPipeError: Buffered stdin data could not be delivered
            OSError: First error hit by a stream pump
        """
        error = self._close_endpoint('stdin')

        deadline = None if timeout is None else time.monotonic() + timeout
        for _, process in self._processes:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            process.wait(timeout=remaining)

        for pump in self._pumps:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            pump.join(remaining)

        if error is not None:
            raise error
        for pump in self._pumps:
            if pump.error is not None:
                raise pump.error

        return self.statuses

    def check(self, timeout: Optional[float] = None) -> List[ProcessStatus]:
        """
        Wait and raise if any leaf failed.

        Raises:
            ProcessFailedError: Naming every failed leaf
        """
        statuses = self.wait(timeout)
        if any(status.failed for status in statuses):
            error = ProcessFailedError(statuses)
            self.logger.info(str(error))
            raise error
        return statuses

    # ------------------------------------------------------------------
    # IO
    # ------------------------------------------------------------------

    def read(self) -> bytes:
        """Read the stdout endpoint to EOF"""
        if self.stdout is None:
            raise ValueError("Handle has no stdout endpoint (spawn with stdout=PIPE)")
        return self.stdout.read()

    def write(self, data: bytes) -> int:
        if self.stdin is None:
            raise ValueError("Handle has no stdin endpoint (spawn with stdin=PIPE)")
        return self.stdin.write(data)

    def communicate(self, input: Any = None, timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Feed input and drain stdout and stderr concurrently, then wait.

        The write and the stderr drain run in StreamPump threads while this
        thread reads stdout, so no child can fill a kernel pipe buffer and
        stall the others.

        Args:
            input: bytes/str/readable file for the stdin endpoint
            timeout: Passed to wait()

        Returns:
            All stdout bytes, or None if there is no stdout endpoint.
            Captured stderr bytes are left in self.stderr_output.
        """
        pumps = []
        close_error = None
        if input is not None:
            if self.stdin is None:
                raise ValueError("Handle has no stdin endpoint (spawn with stdin=PIPE)")
            pumps.append(StreamPump(StreamPump.FEED, self.stdin, input, name='communicate-stdin',
                                    logger=self.logger, chunk_size=self.chunk_size,
                                    ignore_broken_pipe=self.ignore_broken_pipe))
            self.stdin = None
        else:
            close_error = self._close_endpoint('stdin')

        errors = None
        if self.stderr is not None:
            errors = bytearray()
            pumps.append(StreamPump(StreamPump.DRAIN, self.stderr, errors, name='communicate-stderr',
                                    logger=self.logger, chunk_size=self.chunk_size))
            self.stderr = None

        for pump in pumps:
            pump.start()

        output = self.stdout.read() if self.stdout is not None else None

        for pump in pumps:
            pump.join()
        if errors is not None:
            self.stderr_output = bytes(errors)

        if close_error is not None:
            raise close_error
        for pump in pumps:
            if pump.error is not None:
                raise pump.error

        self.wait(timeout)
        return output

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def terminate(self) -> None:
        for _, process in self._processes:
            if process.poll() is None:
                process.terminate()

    def kill(self) -> None:
        for _, process in self._processes:
            if process.poll() is None:
                process.kill()

    def stop(self, grace_period: float = TERMINATE_GRACE_PERIOD) -> List[ProcessStatus]:
        """terminate(), then kill() whatever is still alive after grace_period"""
        self.terminate()
        deadline = time.monotonic() + grace_period
        for _, process in self._processes:
            try:
                process.wait(timeout=max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired:
                self.logger.warning(f"pid {process.pid} ignored SIGTERM, killing")
                process.kill()
                process.wait()
        return self.close()

    def _close_endpoint(self, stream: str) -> Optional[BrokenPipeError]:
        """
        Close one caller endpoint.

        Returns the BrokenPipeError of a flush into a reader that already
        exited, for the caller to raise once the processes are reaped.
        """
        endpoint = getattr(self, stream, None)
        if endpoint is None:
            return None
        setattr(self, stream, None)
        try:
            endpoint.close()
        except BrokenPipeError as e:
            if self.ignore_broken_pipe:
                self.logger.debug(f"{stream} endpoint: reader already gone")
                return None
            self.logger.error(f"{stream} endpoint: buffered data not delivered, reader already gone")
            return e
        return None

    def close(self, discard_errors: bool = False) -> List[ProcessStatus]:
        """
        Close every caller endpoint, reap every process and join the pumps.

        Safe to call more than once. Does not raise on exit status.

        Args:
            discard_errors: Don't raise endpoint errors (cleanup while another
                exception is already propagating)

        Raises:
            BrokenPipeError: Buffered stdin data could not be delivered
        """
        errors = [self._close_endpoint(stream) for stream in STREAMS]
        for _, process in self._processes:
            process.wait()
        for pump in self._pumps:
            pump.join()
        errors = [e for e in errors if e is not None]
        if errors and not discard_errors:
            raise errors[0]
        return self.statuses

    def __enter__(self) -> 'ExecutionHandle':
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close(discard_errors=exc_type is not None)
        return False

    def __del__(self):
        """Abandoned handle: close descriptors, reap children in background"""
        processes = getattr(self, '_processes', None)
        if processes is None:
            return
        for stream in STREAMS:
            # errors are logged by _close_endpoint, nobody is left to raise them to
            self._close_endpoint(stream)
        running = [process for _, process in processes if process.returncode is None and process.poll() is None]
        if running:
            self.logger.warning(f"Handle abandoned with {len(running)} running process(es), reaping in background")
            _reap_in_background(running, self.logger)


# ============================================================================
# GRAPH WIRING (one per spawn)
# ============================================================================

def _check_endpoints(graph: ProcessGraph) -> None:
    """At most one caller endpoint (PIPE) per stream, checked before any pipe or process exists"""
    requested = set()
    for node in iter_nodes(graph):
        for stream, target in node.redirects.items():
            if isinstance(target, EndpointTarget):
                if stream in requested:
                    raise BuildError(f"Only one caller endpoint per stream ({stream} requested twice)")
                requested.add(stream)


class _GraphWiring:
    """Per-spawn bookkeeping: descriptors, pumps, processes and failures"""

    def __init__(self, engine: 'ExecutionEngine'):
        self.engine = engine
        self.logger = engine.logger
        self.processes: List[Tuple[Command, subprocess.Popen]] = []
        self.failures: List[SpawnFailure] = []
        self.pumps: List[StreamPump] = []
        self.endpoints: Dict[str, Any] = {}
        self.child_fds: List[int] = []  # Parent copies of child-side descriptors
        self.files: List[Any] = []       # Files opened for FileTarget

    def walk(self, node: ProcessGraph, ctx: Dict[str, Any]) -> None:
        """
        Spawn every leaf under node.

        ctx maps stream name -> value for Popen (None = inherit, int fd).
        Node redirects override the inherited context; graphs attached as
        redirect targets are spawned after the node's own leaves.
        """
        outer = ctx
        ctx = dict(ctx)
        deferred: List[Tuple[ProcessGraph, Dict[str, Any]]] = []

        for stream, target in node.redirects.items():
            ctx[stream] = self._resolve(target, stream, outer, deferred)

        if isinstance(node, Leaf):
            self._spawn_leaf(node.command, ctx)
        elif isinstance(node, Pipe):
            read_fd, write_fd = os.pipe()
            self.child_fds.extend((read_fd, write_fd))
            self.walk(node.upstream, {**ctx, 'stdout': write_fd})
            self.walk(node.downstream, {**ctx, 'stdin': read_fd})
        elif isinstance(node, Group):
            for member in node.members:
                self.walk(member, ctx)
        else:
            raise BuildError(f"Unknown graph node: {type(node).__name__}")

        for graph, graph_ctx in deferred:
            self.walk(graph, graph_ctx)

    def _resolve(self, target: RedirectTarget, stream: str, outer: Dict[str, Any],
                 deferred: List[Tuple[ProcessGraph, Dict[str, Any]]]) -> Any:
        """Turn a redirect target into the value handed to Popen"""
        if isinstance(target, FileTarget):
            if stream == 'stdin':
                mode = 'rb'
            else:
                mode = 'ab' if target.append else 'wb'
            handle = open(target.path, mode)
            self.files.append(handle)
            self.logger.debug(f"{stream} {target!r}")
            return handle.fileno()

        if isinstance(target, BufferTarget):
            read_fd, write_fd = os.pipe()
            if stream == 'stdin':
                self.child_fds.append(read_fd)
                self.pumps.append(self._pump(StreamPump.FEED, write_fd, target.buffer, stream))
                return read_fd
            self.child_fds.append(write_fd)
            self.pumps.append(self._pump(StreamPump.DRAIN, read_fd, target.buffer, stream))
            return write_fd

        if isinstance(target, GraphTarget):
            read_fd, write_fd = os.pipe()
            self.child_fds.extend((read_fd, write_fd))
            if stream == 'stdin':
                deferred.append((target.graph, {**outer, 'stdout': write_fd}))
                return read_fd
            deferred.append((target.graph, {**outer, 'stdin': read_fd}))
            return write_fd

        if isinstance(target, StreamTarget):
            value = target.stream
            return value if isinstance(value, int) else value.fileno()

        if isinstance(target, EndpointTarget):
            read_fd, write_fd = os.pipe()
            if stream == 'stdin':
                self.child_fds.append(read_fd)
                self.endpoints[stream] = os.fdopen(write_fd, 'wb')
                return read_fd
            self.child_fds.append(write_fd)
            self.endpoints[stream] = os.fdopen(read_fd, 'rb')
            return write_fd

        raise BuildError(f"Unknown redirect target: {target!r}")

    def _pump(self, direction: str, fd: int, buffer: Any, stream: str) -> StreamPump:
        return StreamPump(direction, fd, buffer, name=f"{stream}{len(self.pumps)}",
                          logger=self.logger, chunk_size=self.engine.chunk_size,
                          encoding=self.engine.encoding,
                          ignore_broken_pipe=self.engine.ignore_broken_pipe)

    def _spawn_leaf(self, command: Command, ctx: Dict[str, Any]) -> None:
        """Start one process; record (don't raise) spawn failures"""
        try:
            process = subprocess.Popen(
                list(command.args),
                stdin=ctx['stdin'],
                stdout=ctx['stdout'],
                stderr=ctx['stderr'],
                cwd=self.engine.working_dir,
                env=self.engine.environment,
                close_fds=True,
            )
        except FileNotFoundError as e:
            self._record_failure(command, NOT_FOUND, e)
            return
        except PermissionError as e:
            self._record_failure(command, PERMISSION_DENIED, e)
            return
        except OSError as e:
            self._record_failure(command, OS_ERROR, e)
            return

        self.logger.debug(f"Spawned pid {process.pid}: {command}")
        self.processes.append((command, process))

    def _record_failure(self, command: Command, reason: str, error: OSError) -> None:
        self.logger.debug(f"Spawn failed ({reason}): {command}: {error}")
        self.failures.append(SpawnFailure(command, reason, error))

    def close_child_fds(self) -> None:
        """Close the parent's copies of descriptors now held by children"""
        fds, self.child_fds = self.child_fds, []
        for fd in fds:
            os.close(fd)
        files, self.files = self.files, []
        for handle in files:
            handle.close()

    def abort(self) -> None:
        """Kill and reap whatever started, release every descriptor"""
        for command, process in self.processes:
            if process.poll() is None:
                self.logger.warning(f"Killing pid {process.pid} ({command}) after failed spawn")
                process.kill()
        for _, process in self.processes:
            process.wait()
        for endpoint in self.endpoints.values():
            endpoint.close()
        self.endpoints = {}
        for pump in self.pumps:
            pump.close()


# ============================================================================
# ENGINE
# ============================================================================

class ExecutionEngine:
    """
    UNICO PUNTO di creazione processi.

    Concentrates ALL subprocess creation in one place for:
    - Configuration: working directory and environment per engine
    - Logging: every spawn traced
    - Stats: processes spawned / spawn failures
    - Cleanup: no partially spawned graph is ever left running
    """

    def __init__(self, working_dir=None, env: Optional[Dict[str, Any]] = None,
                 inherit_env: bool = True, logger: logging.Logger = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE, encoding: str = DEFAULT_ENCODING,
                 ignore_broken_pipe: bool = False):
        """
        Initialize execution engine.

        Args:
            working_dir: Directory children start in (None = current directory)
            env: Variables overlaid on the environment; a None value unsets
            inherit_env: Start from os.environ (True) or from an empty environment
            logger: Logger instance for execution tracking
            chunk_size: Read size for stream pumps
            encoding: Encoding for str buffers
            ignore_broken_pipe: Treat a child that stops reading its stdin as
                normal instead of raising BrokenPipeError
        """
        self.working_dir = str(Path(working_dir)) if working_dir is not None else None
        self.logger = logger or logging.getLogger('ExecutionEngine')
        self.chunk_size = chunk_size
        self.encoding = encoding
        self.ignore_broken_pipe = ignore_broken_pipe
        self.environment = self._setup_environment(env, inherit_env)

        # Execution statistics
        self.stats = {
            'graphs': 0,
            'processes': 0,
            'spawn_failures': 0,
        }

    def __repr__(self):
        return f"ExecutionEngine(working_dir={self.working_dir!r})"

    def _setup_environment(self, env: Optional[Dict[str, Any]], inherit_env: bool) -> Optional[Dict[str, str]]:
        """Build the child environment (None = inherit os.environ at spawn time)"""
        if env is None and inherit_env:
            return None

        environment = os.environ.copy() if inherit_env else {}
        for name, value in (env or {}).items():
            if value is None:
                environment.pop(name, None)
            else:
                environment[str(name)] = os.fsdecode(os.fspath(value)) if isinstance(value, os.PathLike) else str(value)
        return environment

    def spawn(self, graph: Any, stdin: Any = None, stdout: Any = None, stderr: Any = None) -> ExecutionHandle:
        """
        Start every leaf of a graph.

        Args:
            graph: Command or graph node
            stdin/stdout/stderr: Extra boundary redirects for this run; PIPE
                exposes a caller endpoint on the returned handle

        Returns:
            ExecutionHandle

        Raises:
            BuildError: Conflicting redirects or more than one PIPE per stream
            SpawnError: One or more leaves could not be started (nothing left running)
            OSError: A redirect file could not be opened (nothing left running)
        """
        graph = redirect(graph, stdin=stdin, stdout=stdout, stderr=stderr)
        _check_endpoints(graph)
        wiring = _GraphWiring(self)

        try:
            wiring.walk(graph, {'stdin': None, 'stdout': None, 'stderr': None})
        except BaseException:
            wiring.close_child_fds()
            wiring.abort()
            raise

        wiring.close_child_fds()

        if wiring.failures:
            self.stats['spawn_failures'] += len(wiring.failures)
            wiring.abort()
            error = SpawnError(wiring.failures)
            self.logger.error(str(error))
            raise error

        for pump in wiring.pumps:
            pump.start()

        self.stats['graphs'] += 1
        self.stats['processes'] += len(wiring.processes)
        self.logger.info(f"Spawned {len(wiring.processes)} process(es) for {graph!r}")

        return ExecutionHandle(graph, wiring.processes, wiring.pumps, wiring.endpoints,
                               logger=self.logger, chunk_size=self.chunk_size,
                               ignore_broken_pipe=self.ignore_broken_pipe)

    def get_stats(self) -> Dict[str, int]:
        """Get execution statistics"""
        return self.stats.copy()

    def reset_stats(self):
        """Reset execution statistics"""
        for key in self.stats:
            self.stats[key] = 0
