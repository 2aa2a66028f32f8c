import sys

import pytest

from cmdpipe import ExecutionEngine


collect_ignore_glob = []

if sys.platform == "win32":
    # Process tests drive POSIX utilities (echo, cat, sort, sh)
    collect_ignore_glob += ["test_execution_engine.py", "test_command_io.py"]


@pytest.fixture
def engine():
    return ExecutionEngine()


@pytest.fixture
def python():
    """argv prefix running an inline script with the current interpreter"""
    def _python(script):
        return [sys.executable, "-c", script]
    return _python
