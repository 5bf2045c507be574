import io
import time
from queue import Queue

import pytest

from raftkv.cli import build_cluster, execute_command, main
from raftkv.messages import ApplyMsg, ClientRequest
from raftkv.kvstore import KVStore
from raftkv.node import RaftNode
from raftkv.persistence import Persister


@pytest.fixture
def node_and_store():
    node = RaftNode(0, [], Persister(), Queue(maxsize=100))
    store = KVStore(node)
    yield node, store
    store.close()


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_build_cluster_creates_connected_nodes():
    nodes, stores = build_cluster(3)
    try:
        assert [n.node_id for n in nodes] == [0, 1, 2]
        assert len(stores) == 3
        assert all(n.client_queue.maxsize == 100 for n in nodes)
        assert all(n.apply_queue.maxsize == 100 for n in nodes)
    finally:
        for store in stores:
            store.close()


def test_build_cluster_rejects_empty():
    with pytest.raises(ValueError):
        build_cluster(0)


def test_blank_line_gives_empty_output(node_and_store):
    node, store = node_and_store
    assert execute_command("   ", store, node) == ""


def test_exit_returns_none(node_and_store):
    node, store = node_and_store
    assert execute_command("EXIT", store, node) is None


@pytest.mark.parametrize(
    "line, usage",
    [
        ("put a", "Usage: put <key> <value>"),
        ("append a b c", "Usage: append <key> <value>"),
        ("get", "Usage: get <key>"),
    ],
)
def test_usage_messages(node_and_store, line, usage):
    node, store = node_and_store
    assert execute_command(line, store, node) == usage


def test_get_missing_key(node_and_store):
    node, store = node_and_store
    assert execute_command("get nothing", store, node) == "Key not found"


def test_get_applied_value(node_and_store):
    node, store = node_and_store
    node.apply_queue.put(ApplyMsg(True, ClientRequest(op="Put", key="k", value="v"), 0))
    assert _wait_for(lambda: store.get("k") == "v")
    assert execute_command("GET k", store, node) == "Value: v"


def test_state_of_fresh_node(node_and_store):
    node, store = node_and_store
    assert execute_command("state", store, node) == "Node state: Follower, Term: 0, LeaderID: -1"


def test_unknown_command_prints_help(node_and_store):
    node, store = node_and_store
    output = execute_command("frobnicate", store, node)
    lines = output.splitlines()
    assert lines[0] == "Unknown command. Available commands:"
    assert "  put <key> <value>" in lines
    assert "  exit" in lines


def test_failed_put_reports_leader(node_and_store):
    node, store = node_and_store
    output = execute_command("put k v", store, node)
    assert output == "Put result: false\nNo leader currently elected"


def test_main_rejects_bad_size():
    with pytest.raises(SystemExit):
        main(["-size", "0"])


def test_main_runs_shell(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("state\nbogus\nexit\nget never\n"))
    assert main(["-id", "0", "-size", "1"]) == 0
    out = capsys.readouterr().out
    assert "Node 0 ready. Enter commands:" in out
    assert "Node state: Leader" in out
    assert "Unknown command. Available commands:" in out
    assert "Key not found" not in out