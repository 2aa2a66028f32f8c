"""Spawning graphs: wiring, statuses, spawn failures, pumps"""
import gc
import io
import os
import signal
import subprocess
import time

import pytest

from cmdpipe import Command, ExecutionEngine, cmd, pipeline, redirect
from cmdpipe.errors import (
    NOT_FOUND, PERMISSION_DENIED, BuildError, ProcessFailedError, SpawnError,
)
from cmdpipe.execution_engine import ExecutionHandle, ProcessStatus
from cmdpipe.process_graph import DEVNULL, PIPE


def test_spawn_returns_handle_with_statuses(engine):
    handle = engine.spawn(cmd("true"))
    assert isinstance(handle, ExecutionHandle)
    statuses = handle.wait()
    assert len(statuses) == 1
    assert statuses[0].success
    assert statuses[0].command == cmd("true")
    assert statuses[0].pid == handle.pids[0]


def test_pipe_connects_stdout_to_stdin(engine):
    handle = engine.spawn(cmd("echo hello") | cmd("tr a-z A-Z"), stdout=PIPE)
    with handle:
        assert handle.stdout.read() == b"HELLO\n"
    assert handle.exitstatus == [0, 0]


def test_group_members_share_stdout(engine, python):
    member = "for i in range(50):\n    print('{0} %d' % i, flush=True)"
    graph = Command(python(member.format("a"))) & Command(python(member.format("b")))
    handle = engine.spawn(graph, stdout=PIPE)
    lines = handle.read().decode().splitlines()
    handle.check()
    assert len(lines) == 100
    for prefix in ("a", "b"):
        assert [line for line in lines if line.startswith(prefix + " ")] == \
            ["%s %d" % (prefix, i) for i in range(50)]


def test_fan_out_into_concurrent_group(engine, python):
    producer = Command(python("for i in range(20):\n    print(i, flush=True)"))
    graph = pipeline(producer, cmd("sed 's/^/A /'") & cmd("sed 's/^/B /'"))
    handle = engine.spawn(graph, stdout=PIPE)
    lines = handle.read().decode().splitlines()
    handle.check()
    assert all(line[:2] in ("A ", "B ") for line in lines)
    assert sorted(int(line[2:]) for line in lines) == list(range(20))


def test_statuses_follow_leaf_order(engine):
    graph = pipeline(cmd("echo x"), cmd("sh -c 'cat >/dev/null; exit 3'"), cmd("cat"))
    handle = engine.spawn(graph, stdout=DEVNULL)
    statuses = handle.wait()
    assert [s.command.program for s in statuses] == ["echo", "sh", "cat"]
    assert [s.returncode for s in statuses] == [0, 3, 0]
    assert not handle.success


def test_check_names_failed_leaves(engine):
    handle = engine.spawn(cmd("sh -c 'exit 3'") & cmd("true"))
    with pytest.raises(ProcessFailedError) as exc_info:
        handle.check()
    error = exc_info.value
    assert len(error.statuses) == 2
    assert [s.returncode for s in error.failed] == [3]
    assert "exit 3" in str(error)
    assert "1 of 2" in str(error)


def test_ignored_status_is_not_a_failure(engine):
    handle = engine.spawn(cmd("false").ignore_status() & cmd("true"))
    statuses = handle.check()
    assert statuses[0].ignored
    assert statuses[0].returncode == 1
    assert not statuses[0].success
    assert not statuses[0].failed


def test_signal_termination_is_reported(engine):
    handle = engine.spawn(cmd("sleep 30"))
    handle.kill()
    status = handle.wait()[0]
    assert status.terminated_by_signal
    assert status.signal == signal.SIGKILL
    assert status.exit_code is None
    assert status.failed
    with pytest.raises(ProcessFailedError) as exc_info:
        handle.check()
    assert "SIGKILL" in str(exc_info.value)


def test_stop_terminates_gracefully(engine):
    handle = engine.spawn(cmd("sleep 30"))
    statuses = handle.stop(grace_period=5)
    assert statuses[0].signal == signal.SIGTERM


def test_wait_timeout(engine):
    handle = engine.spawn(cmd("sleep 30"))
    with pytest.raises(subprocess.TimeoutExpired):
        handle.wait(timeout=0.1)
    assert handle.running
    handle.kill()
    handle.wait()
    assert not handle.running


def test_spawn_not_found_leaves_nothing_running(engine):
    start = time.monotonic()
    with pytest.raises(SpawnError) as exc_info:
        engine.spawn(cmd("sleep 30") & cmd("cmdpipe-no-such-program-xyz"))
    assert time.monotonic() - start < 10
    error = exc_info.value
    assert error.reasons == [NOT_FOUND]
    assert error.failures[0].command == cmd("cmdpipe-no-such-program-xyz")
    assert isinstance(error, OSError)
    assert engine.get_stats()["spawn_failures"] == 1
    assert engine.get_stats()["processes"] == 0


def test_spawn_attempts_every_leaf(engine):
    with pytest.raises(SpawnError) as exc_info:
        engine.spawn(cmd("cmdpipe-missing-one") | cmd("cat") | cmd("cmdpipe-missing-two"))
    assert [f.command.program for f in exc_info.value.failures] == [
        "cmdpipe-missing-one", "cmdpipe-missing-two"]


def test_spawn_permission_denied(engine, tmp_path):
    script = tmp_path / "not-executable.sh"
    script.write_text("#!/bin/sh\necho hi\n")
    os.chmod(script, 0o644)
    with pytest.raises(SpawnError) as exc_info:
        engine.spawn(Command([script]))
    assert exc_info.value.reasons == [PERMISSION_DENIED]


def test_file_redirects(engine, tmp_path):
    out = tmp_path / "out.txt"
    engine.spawn(pipeline(cmd("echo one"), out)).check()
    engine.spawn(redirect(cmd("echo two"), stdout=out, append=True)).check()
    assert out.read_text() == "one\ntwo\n"

    handle = engine.spawn(pipeline(out, cmd("sort -r")), stdout=PIPE)
    assert handle.read() == b"two\none\n"
    handle.check()


def test_missing_input_file_raises_oserror(engine, tmp_path):
    with pytest.raises(FileNotFoundError):
        engine.spawn(pipeline(tmp_path / "missing.txt", cmd("cat")))


def test_stderr_to_buffer(engine):
    errors = bytearray()
    engine.spawn(redirect(cmd("sh -c 'echo oops >&2'"), stderr=errors)).check()
    assert errors == b"oops\n"


def test_stdout_to_text_buffer(engine):
    out = io.StringIO()
    engine.spawn(redirect(cmd("printf 'h\\303\\251llo'"), stdout=out)).check()
    assert out.getvalue() == "héllo"


def test_stdin_from_bytes(engine):
    handle = engine.spawn(redirect(cmd("sort"), stdin=b"b\na\n"), stdout=PIPE)
    assert handle.read() == b"a\nb\n"
    handle.check()


def test_stderr_into_another_graph(engine, tmp_path):
    errfile = tmp_path / "errs.txt"
    graph = pipeline(
        cmd("sh -c 'echo out; echo err >&2'"),
        stdout=DEVNULL,
        stderr=pipeline(cmd("tr a-z A-Z"), errfile),
    )
    statuses = engine.spawn(graph).check()
    assert [s.command.program for s in statuses] == ["sh", "tr"]
    assert errfile.read_text() == "ERR\n"


def test_stdin_from_another_graph(engine):
    graph = redirect(cmd("sort"), stdin=cmd("printf 'b\\na\\n'"))
    handle = engine.spawn(graph, stdout=PIPE)
    assert handle.read() == b"a\nb\n"
    handle.check()


def test_communicate(engine):
    handle = engine.spawn(cmd("sort"), stdin=PIPE, stdout=PIPE)
    assert handle.communicate(b"b\na\n") == b"a\nb\n"
    assert handle.success


def test_communicate_large_payload_does_not_deadlock(engine):
    payload = b"x" * (4 * 1024 * 1024)
    handle = engine.spawn(cmd("cat"), stdin=PIPE, stdout=PIPE)
    assert handle.communicate(payload, timeout=60) == payload


def test_feeder_stops_quietly_when_engine_ignores_broken_pipe():
    engine = ExecutionEngine(ignore_broken_pipe=True)
    handle = engine.spawn(redirect(cmd("head -c 1"), stdin=b"y" * (1024 * 1024)), stdout=PIPE)
    assert handle.read() == b"y"
    handle.check()


def test_feeder_reports_reader_that_exits_early(engine):
    handle = engine.spawn(redirect(cmd("head -c 1"), stdin=b"y" * (1024 * 1024)), stdout=PIPE)
    assert handle.read() == b"y"
    with pytest.raises(BrokenPipeError):
        handle.check()
    assert not handle.running


def test_communicate_drains_large_stderr(engine, python):
    script = "import sys; sys.stderr.write('e' * 500000); sys.stderr.flush(); sys.stdout.write('ok')"
    handle = engine.spawn(Command(python(script)), stdin=PIPE, stdout=PIPE, stderr=PIPE)
    assert handle.communicate(timeout=30) == b"ok"
    assert len(handle.stderr_output) == 500000
    assert handle.success


def test_abandoned_handle_closes_endpoints_and_reaps(engine):
    handle = engine.spawn(cmd("sleep 0.3"), stdout=PIPE)
    stdout = handle.stdout
    pid = handle.pids[0]
    del handle
    gc.collect()
    assert stdout.closed

    deadline = time.monotonic() + 5
    while True:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            break
        assert time.monotonic() < deadline, "abandoned child was never reaped"
        time.sleep(0.05)


def test_pump_error_is_raised_from_wait(engine):
    class FullDisk:
        def write(self, data):
            raise OSError("disk full")

    handle = engine.spawn(redirect(cmd("echo hi"), stdout=FullDisk()))
    with pytest.raises(OSError, match="disk full"):
        handle.wait()


def test_only_one_caller_endpoint_per_stream(engine, monkeypatch):
    def untouchable(*args, **kwargs):
        raise AssertionError("no OS resource may be allocated")

    monkeypatch.setattr(os, "pipe", untouchable)
    monkeypatch.setattr(subprocess, "Popen", untouchable)
    graph = redirect(cmd("echo a"), stdout=PIPE) & redirect(cmd("echo b"), stdout=PIPE)
    with pytest.raises(BuildError):
        engine.spawn(graph)
    assert engine.get_stats()["processes"] == 0


def test_working_dir(tmp_path, python):
    engine = ExecutionEngine(working_dir=tmp_path)
    handle = engine.spawn(Command(python("import os; print(os.getcwd())")), stdout=PIPE)
    assert handle.read().decode().strip() == os.path.realpath(tmp_path)
    handle.check()


def test_env_overlay_and_unset(monkeypatch, python):
    monkeypatch.setenv("CMDPIPE_INHERITED", "kept")
    engine = ExecutionEngine(env={"CMDPIPE_TEST": 42, "CMDPIPE_INHERITED": None})
    script = "import os; print(os.environ.get('CMDPIPE_TEST'), os.environ.get('CMDPIPE_INHERITED'))"
    handle = engine.spawn(Command(python(script)), stdout=PIPE)
    assert handle.read() == b"42 None\n"
    handle.check()


def test_env_without_inheritance(monkeypatch, python):
    monkeypatch.setenv("CMDPIPE_INHERITED", "kept")
    engine = ExecutionEngine(env={"ONLY": "1"}, inherit_env=False)
    script = "import os; print(os.environ.get('CMDPIPE_INHERITED'), os.environ.get('ONLY'))"
    handle = engine.spawn(Command(python(script)), stdout=PIPE)
    assert handle.read() == b"None 1\n"
    handle.check()


def test_stats(engine):
    engine.spawn(cmd("true") | cmd("true")).wait()
    engine.spawn(cmd("true")).wait()
    assert engine.get_stats() == {"graphs": 2, "processes": 3, "spawn_failures": 0}
    engine.reset_stats()
    assert engine.get_stats()["graphs"] == 0


def test_process_status_properties():
    status = ProcessStatus(cmd("true"), pid=1, returncode=None)
    assert status.running
    assert not status.failed
    assert status.exit_code is None
    assert "still running" in str(status)

    status = ProcessStatus(cmd("false"), pid=1, returncode=1)
    assert status.exit_code == 1
    assert status.failed
    assert "exit 1" in str(status)
