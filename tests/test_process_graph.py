"""Graph composition, redirect rules and inspection (nothing is spawned)"""
import io
from pathlib import Path

import pytest

from cmdpipe import cmd
from cmdpipe.errors import BuildError, RedirectConflictError
from cmdpipe.process_graph import (
    PIPE, DEVNULL, BufferTarget, FileTarget, GraphTarget, StreamTarget,
    Group, Leaf, Pipe, as_target, format_graph_tree, get_execution_plan,
    iter_leaves, parallel, pipe, pipeline, redirect,
)


def programs(graph):
    return [leaf.command.program for leaf in iter_leaves(graph)]


def test_operators_build_nodes():
    p = cmd("echo hello") | cmd("sort")
    assert isinstance(p, Pipe)
    assert isinstance(p.upstream, Leaf)
    g = cmd("echo a") & cmd("echo b")
    assert isinstance(g, Group)
    assert len(g.members) == 2


def test_commands_are_reusable_across_graphs():
    c = cmd("cat")
    graph = c | c | c
    assert programs(graph) == ["cat", "cat", "cat"]


def test_parallel_flattens_nested_groups():
    a, b, c = cmd("echo a"), cmd("echo b"), cmd("echo c")
    left = (a & b) & c
    right = a & (b & c)
    assert [m.command for m in left.members] == [a, b, c]
    assert [m.command for m in right.members] == [a, b, c]


def test_parallel_keeps_redirected_group():
    inner = redirect(cmd("echo a") & cmd("echo b"), stdout="out.txt")
    outer = parallel(inner, cmd("echo c"))
    assert len(outer.members) == 2
    assert outer.members[0] is inner


def test_parallel_single_member_allowed():
    assert len(parallel(cmd("true")).members) == 1


def test_parallel_needs_a_member():
    with pytest.raises(BuildError):
        parallel()


def test_pipe_from_redirected_stdout_conflicts():
    src = redirect(cmd("echo hi"), stdout="out.txt")
    with pytest.raises(RedirectConflictError):
        pipe(src, cmd("sort"))


def test_pipe_into_redirected_stdin_conflicts():
    dst = redirect(cmd("sort"), stdin="in.txt")
    with pytest.raises(RedirectConflictError):
        cmd("echo hi") | dst


def test_pipe_boundary_looks_through_nested_pipes():
    chain = pipeline(cmd("cat"), cmd("sort"), stdout="out.txt")
    with pytest.raises(RedirectConflictError):
        chain | cmd("wc")


def test_second_redirect_on_same_stream_conflicts():
    g = redirect(cmd("sort"), stdout="a.txt")
    with pytest.raises(RedirectConflictError):
        redirect(g, stdout="b.txt")
    # other streams are still free
    g2 = redirect(g, stderr="errs.txt")
    assert g2.redirects.stderr == FileTarget("errs.txt")


def test_redirect_does_not_mutate():
    leaf = Leaf(cmd("sort"))
    redirected = redirect(leaf, stdout="out.txt")
    assert not leaf.redirects
    assert redirected.redirects.stdout == FileTarget("out.txt")


def test_append_applies_to_output_streams():
    g = redirect(cmd("sort"), stdin="in.txt", stdout="out.txt", append=True)
    assert g.redirects.stdin == FileTarget("in.txt", append=False)
    assert g.redirects.stdout == FileTarget("out.txt", append=True)


def test_reused_node_is_rejected():
    leaf = Leaf(cmd("cat"))
    with pytest.raises(BuildError):
        pipe(leaf, leaf)
    with pytest.raises(BuildError):
        parallel(leaf, leaf)


def test_graph_target_cannot_close_a_cycle():
    leaf = Leaf(cmd("cat"))
    with pytest.raises(BuildError):
        redirect(leaf, stdout=leaf)


@pytest.mark.parametrize("value, stream, expected_type", [
    ("out.txt", "stdout", FileTarget),
    (Path("out.txt"), "stderr", FileTarget),
    (b"data", "stdin", BufferTarget),
    (bytearray(), "stdout", BufferTarget),
    (io.BytesIO(), "stdout", BufferTarget),
    (io.StringIO(), "stderr", BufferTarget),
    (io.BytesIO(b"x"), "stdin", BufferTarget),
    (3, "stdout", StreamTarget),
])
def test_as_target_coercion(value, stream, expected_type):
    assert isinstance(as_target(value, stream), expected_type)


def test_as_target_wraps_commands():
    target = as_target(cmd("sort"), "stdout")
    assert isinstance(target, GraphTarget)
    assert isinstance(target.graph, Leaf)


def test_as_target_passes_markers_through():
    assert as_target(PIPE, "stdout") is PIPE
    assert as_target(DEVNULL, "stderr") is DEVNULL


@pytest.mark.parametrize("value, stream", [
    (b"data", "stdout"),
    (True, "stdout"),
    (object(), "stdin"),
    ("file", "stdlog"),
])
def test_as_target_rejects(value, stream):
    with pytest.raises(BuildError):
        as_target(value, stream)


def test_pipeline_chains_left_to_right():
    g = pipeline(cmd("cut -d: -f3 /etc/passwd"), cmd("sort -n"), cmd("tail -n5"))
    assert programs(g) == ["cut", "sort", "tail"]
    assert isinstance(g.upstream, Pipe)


def test_pipeline_paths_at_the_ends_are_files():
    g = pipeline("in.txt", cmd("sort"), "out.txt")
    assert isinstance(g, Leaf)
    assert g.redirects.stdin == FileTarget("in.txt")
    assert g.redirects.stdout == FileTarget("out.txt")


def test_pipeline_single_stage_returns_it():
    leaf = Leaf(cmd("ls"))
    assert pipeline(leaf) is leaf


def test_pipeline_path_and_keyword_conflict():
    with pytest.raises(RedirectConflictError):
        pipeline(cmd("sort"), "out.txt", stdout="other.txt")


def test_pipeline_requires_stages():
    with pytest.raises(BuildError):
        pipeline()


def test_graph_target_leaves_follow_children():
    g = pipeline(cmd("do_work"), stdout=pipeline(cmd("sort"), "out.txt"), stderr="errs.txt")
    assert programs(g) == ["do_work", "sort"]


def test_format_graph_tree():
    g = pipeline(cmd("cut -d: -f3 /etc/passwd"), cmd("sort -n"), cmd("tail -n5"))
    assert format_graph_tree(g) == "\n".join([
        "Pipe:",
        "  Pipe:",
        "    Leaf: cut -d: -f3 /etc/passwd",
        "    Leaf: sort -n",
        "  Leaf: tail -n5",
    ])


def test_format_graph_tree_shows_redirects():
    g = redirect(cmd("sort"), stdout="out.txt", stderr=cmd("cat"))
    assert format_graph_tree(g) == "\n".join([
        "Leaf: sort",
        "  Redirect stdout: >out.txt",
        "  Redirect stderr:",
        "    Leaf: cat",
    ])


def test_execution_plan():
    g = pipeline(cmd("echo world") & cmd("echo hello"), cmd("sort"), stderr="errs.txt")
    plan = get_execution_plan(g)
    assert plan["type"] == "Pipe"
    assert plan["commands"] == ["echo", "echo", "sort"]
    assert plan["leaf_count"] == 3
    assert plan["pipe_count"] == 1
    assert plan["requires_pipe"]
    assert plan["requires_group"]
    assert plan["requires_redirect"]


def test_execution_plan_single_leaf():
    plan = get_execution_plan(Leaf(cmd("true")))
    assert plan == {
        "type": "Leaf",
        "commands": ["true"],
        "leaf_count": 1,
        "pipe_count": 0,
        "requires_pipe": False,
        "requires_group": False,
        "requires_redirect": False,
    }
