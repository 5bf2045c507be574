import queue

import pytest

from raftkv.messages import ClientRequest, LogEntry
from raftkv.persistence import Persister, decode_state, encode_state


def test_new_persister_is_empty():
    p = Persister()
    assert p.read_raft_state() is None
    assert p.read_snapshot() is None
    assert p.raft_state_size() == 0


def test_save_and_read_raft_state():
    p = Persister()
    p.save_raft_state(b"abc")
    assert p.read_raft_state() == b"abc"
    assert p.raft_state_size() == len(b"abc")


def test_save_state_and_snapshot():
    p = Persister()
    p.save_state_and_snapshot(b"state", b"snap")
    assert p.read_raft_state() == b"state"
    assert p.read_snapshot() == b"snap"


def test_saved_bytearray_is_not_shared():
    p = Persister()
    buf = bytearray(b"xyz")
    p.save_raft_state(buf)
    buf[0] = ord("q")
    assert p.read_raft_state() == b"xyz"


def test_copy_is_independent():
    p = Persister()
    p.save_state_and_snapshot(b"state", b"snap")
    clone = p.copy()
    p.save_state_and_snapshot(b"other", None)
    assert clone.read_raft_state() == b"state"
    assert clone.read_snapshot() == b"snap"
    assert p.read_snapshot() is None


def test_state_round_trip():
    log = [
        LogEntry(term=1, command=ClientRequest("Put", "a", "1")),
        LogEntry(term=2, command=ClientRequest("Append", "a", "2")),
        LogEntry(term=2, command="plain"),
    ]
    assert decode_state(encode_state(2, 1, log)) == (2, 1, log)


def test_empty_log_round_trip():
    assert decode_state(encode_state(0, -1, [])) == (0, -1, [])


def test_response_queue_is_not_persisted():
    req = ClientRequest("Put", "k", "v", resp=queue.Queue(maxsize=1))
    _, _, log = decode_state(encode_state(1, 0, [LogEntry(1, req)]))
    assert log[0].command.resp is None
    assert log[0].command.key == "k"


def test_persister_stores_encoded_state():
    p = Persister()
    data = encode_state(3, 2, [LogEntry(3, ClientRequest("Put", "x", "y"))])
    p.save_raft_state(data)
    term, voted, log = decode_state(p.read_raft_state())
    assert (term, voted) == (3, 2)
    assert log[0].command.op == "Put"


@pytest.mark.parametrize("data", [None, b""])
def test_decode_no_data(data):
    assert decode_state(data) is None


@pytest.mark.parametrize("data", [b"not json", b"{}", b'{"current_term":1}', b"\xff\xfe"])
def test_decode_malformed_raises(data):
    with pytest.raises(ValueError):
        decode_state(data)


def test_decode_bad_entry_raises():
    bad = b'{"current_term":1,"voted_for":0,"log":[{"term":"x"}]}'
    with pytest.raises(ValueError):
        decode_state(bad)


def test_encode_unserializable_command_raises():
    with pytest.raises(TypeError):
        encode_state(1, 0, [LogEntry(1, object())])