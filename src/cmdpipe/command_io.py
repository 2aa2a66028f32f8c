"""
Command IO - run / read / open helpers on top of ExecutionEngine

Every helper spawns through an engine (the module default unless engine= is
given) and applies one fixed policy:

    run(g)           output inherited, wait + check
    read(g)          stdout captured, drained BEFORE waiting, then check
    read_text(g)     read() decoded, one trailing newline removed
    read_lines(g)    decoded lines streamed, check when exhausted
    success(g)       wait, True/False instead of raising
    opened(g, mode)  caller gets the endpoint, close + wait on every exit path

Capturing never waits for exit before draining: a child writing more than a
pipe buffer holds would otherwise block forever.
"""
import io
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from .constants import DEFAULT_ENCODING, MODE_READ, MODE_WRITE, MODE_READ_WRITE, OPEN_MODES
from .execution_engine import ExecutionEngine, ExecutionHandle
from .process_graph import PIPE, BufferTarget


_default_engine: Optional[ExecutionEngine] = None
_default_engine_lock = threading.Lock()


def get_default_engine() -> ExecutionEngine:
    """Module-wide engine, created on first use"""
    global _default_engine
    with _default_engine_lock:
        if _default_engine is None:
            _default_engine = ExecutionEngine()
        return _default_engine


def set_default_engine(engine: Optional[ExecutionEngine]) -> None:
    """Replace the module-wide engine (None = recreate on next use)"""
    global _default_engine
    with _default_engine_lock:
        _default_engine = engine


def _engine(engine: Optional[ExecutionEngine]) -> ExecutionEngine:
    return engine if engine is not None else get_default_engine()


def _chomp(text: str) -> str:
    if text.endswith('\r\n'):
        return text[:-2]
    if text.endswith('\n'):
        return text[:-1]
    return text


def run(graph: Any, wait: bool = True, engine: Optional[ExecutionEngine] = None) -> ExecutionHandle:
    """
    Run a graph with inherited output.

    Args:
        graph: Command or graph node
        wait: Wait for exit and raise on failure
        engine: Engine to spawn with

    Returns:
        ExecutionHandle (already reaped when wait=True)

    Raises:
        SpawnError: A leaf could not be started
        ProcessFailedError: A leaf failed (wait=True only)
    """
    handle = _engine(engine).spawn(graph)
    if wait:
        handle.check()
    return handle


def read(graph: Any, input: Any = None, engine: Optional[ExecutionEngine] = None) -> bytes:
    """
    Run a graph and return everything it wrote to stdout.

    Args:
        graph: Command or graph node
        input: Optional bytes/str/readable fed to stdin from a pump thread
        engine: Engine to spawn with

    Raises:
        SpawnError, ProcessFailedError
        BrokenPipeError: The graph exited before consuming all of input
            (unless the engine ignores broken pipes)
    """
    stdin = BufferTarget(input) if input is not None else None
    handle = _engine(engine).spawn(graph, stdin=stdin, stdout=PIPE)
    try:
        output = handle.read()
    except BaseException:
        handle.kill()
        handle.close(discard_errors=True)
        raise
    handle.close()
    handle.check()
    return output


def read_text(graph: Any, encoding: str = DEFAULT_ENCODING, chomp: bool = True,
              input: Any = None, engine: Optional[ExecutionEngine] = None) -> str:
    """read() decoded; with chomp, one trailing \\n or \\r\\n is removed"""
    text = read(graph, input=input, engine=engine).decode(encoding)
    return _chomp(text) if chomp else text


def read_lines(graph: Any, encoding: str = DEFAULT_ENCODING, keepends: bool = False,
               engine: Optional[ExecutionEngine] = None) -> Iterator[str]:
    """
    Stream stdout line by line.

    The graph is spawned on first iteration. Exhausting the generator waits
    and checks the exit status; closing it early kills and reaps the
    processes without checking.
    """
    handle = _engine(engine).spawn(graph, stdout=PIPE)
    stdout, handle.stdout = handle.stdout, None
    try:
        with io.TextIOWrapper(stdout, encoding=encoding) as text:
            for line in text:
                yield line if keepends else _chomp(line)
    except BaseException:
        handle.kill()
        handle.close(discard_errors=True)
        raise
    handle.close()
    handle.check()


def success(graph: Any, engine: Optional[ExecutionEngine] = None) -> bool:
    """
    Run a graph and report whether every leaf succeeded.

    Exit status never raises here; a leaf that cannot be spawned still
    raises SpawnError.
    """
    return _engine(engine).spawn(graph).success


@contextmanager
def opened(graph: Any, mode: str = MODE_READ, engine: Optional[ExecutionEngine] = None):
    """
    Spawn a graph and hand the caller one end of it.

        mode 'r'   -> binary reader of stdout
        mode 'w'   -> binary writer into stdin
        mode 'r+'  -> the ExecutionHandle, with .stdin and .stdout

    Example:
        with opened(cmd("sort"), "w") as sink:
            sink.write(b"b\\na\\n")

    On a normal exit the endpoints are closed (flushing buffered writes),
    the processes waited and the exit status checked. Data the child never
    read raises BrokenPipeError, a failed leaf ProcessFailedError. An
    exception from the block kills the processes first, then propagates
    unchanged.
    """
    if mode not in OPEN_MODES:
        raise ValueError(f"Invalid mode {mode!r}, expected one of {', '.join(OPEN_MODES)}")

    streams = {}
    if mode in (MODE_READ, MODE_READ_WRITE):
        streams['stdout'] = PIPE
    if mode in (MODE_WRITE, MODE_READ_WRITE):
        streams['stdin'] = PIPE

    handle = _engine(engine).spawn(graph, **streams)
    try:
        if mode == MODE_READ:
            yield handle.stdout
        elif mode == MODE_WRITE:
            yield handle.stdin
        else:
            yield handle
    except BaseException:
        handle.kill()
        handle.close(discard_errors=True)
        raise
    handle.close()
    handle.check()


def open_process(graph: Any, mode: str, callback: Callable[[Any], Any],
                 engine: Optional[ExecutionEngine] = None) -> Any:
    """
    Run callback on the opened endpoint and return its result.

    Same cleanup and status rules as opened().
    """
    with opened(graph, mode, engine=engine) as stream:
        return callback(stream)
