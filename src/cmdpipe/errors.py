"""
Exception taxonomy for cmdpipe

    CommandError
    ├── BuildError            - raised while building commands/graphs, nothing spawned yet
    │   ├── TemplateSyntaxError
    │   └── RedirectConflictError
    ├── SpawnError            - a leaf could not be started (program missing, not executable)
    └── ProcessFailedError    - children ran but at least one exited non-zero or on a signal

BuildError and SpawnError are fatal to the call that triggered them. ProcessFailedError
is an ordinary exception the caller may catch and inspect.
"""
import signal
from dataclasses import dataclass
from typing import List, Optional


class CommandError(Exception):
    """Base class for every error raised by cmdpipe"""


class BuildError(CommandError, ValueError):
    """Malformed template, invalid value, conflicting redirect or reused graph node"""


class TemplateSyntaxError(BuildError):
    """Template could not be lexed (unterminated quote, bad marker, ...)"""

    def __init__(self, message: str, template: str = '', position: Optional[int] = None):
        self.template = template
        self.position = position
        if position is not None:
            message = f"{message} at pos {position}"
        super().__init__(message)


class RedirectConflictError(BuildError):
    """A stream boundary already carries a redirect"""


# Spawn failure reasons
NOT_FOUND = 'not_found'
PERMISSION_DENIED = 'permission_denied'
OS_ERROR = 'os_error'


@dataclass
class SpawnFailure:
    """One leaf that could not be started"""
    command: object     # Command
    reason: str         # NOT_FOUND, PERMISSION_DENIED or OS_ERROR
    error: OSError

    def __str__(self) -> str:
        return f"{self.command!r}: {self.reason} ({self.error.strerror or self.error})"


class SpawnError(CommandError, OSError):
    """
    One or more leaves of a graph could not be started.

    Every leaf of the graph is attempted before this is raised, and every
    process that did start has already been killed and reaped.
    """

    def __init__(self, failures: List[SpawnFailure]):
        self.failures = failures
        details = '; '.join(str(f) for f in failures)
        super().__init__(f"failed to spawn {len(failures)} process(es): {details}")

    @property
    def reasons(self) -> List[str]:
        return [f.reason for f in self.failures]


def describe_exit(returncode: Optional[int], signal_number: Optional[int] = None) -> str:
    """Human-readable exit description ("exit 1", "signal SIGKILL")"""
    if signal_number is not None:
        try:
            return f"signal {signal.Signals(signal_number).name}"
        except ValueError:
            return f"signal {signal_number}"
    if returncode is None:
        return "still running"
    return f"exit {returncode}"


class ProcessFailedError(CommandError):
    """
    At least one leaf exited with a non-zero status or was killed by a signal.

    Attributes:
        statuses: ProcessStatus for every leaf, in graph order
        failed: the subset that failed
    """

    def __init__(self, statuses: list):
        self.statuses = statuses
        self.failed = [s for s in statuses if s.failed]
        details = ', '.join(f"{s.command!r} ({describe_exit(s.returncode, s.signal)})"
                            for s in self.failed)
        super().__init__(f"{len(self.failed)} of {len(statuses)} process(es) failed: {details}")
