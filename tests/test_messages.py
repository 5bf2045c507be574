import queue

from raftkv.messages import (
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    ClientRequest,
    ClientResponse,
    LogEntry,
    NodeState,
    RequestVoteArgs,
    RequestVoteReply,
    State,
)


def test_state_names():
    assert str(State(0)) == "Follower"
    assert str(State(1)) == "Candidate"
    assert str(State(2)) == "Leader"


def test_state_order_follows_declaration():
    assert [State(0), State(1), State(2)] == [
        State.FOLLOWER,
        State.CANDIDATE,
        State.LEADER,
    ]
    assert list(State) == [State(0), State(1), State(2)]


def test_client_response_defaults():
    resp = ClientResponse()
    assert resp.success is False
    assert resp.value == ""
    assert resp.leader == 0


def test_client_request_equality_ignores_response_queue():
    a = ClientRequest("Put", "k", "v", resp=queue.Queue(maxsize=1))
    b = ClientRequest("Put", "k", "v")
    assert a == b
    assert a.resp is not b.resp and b.resp is None


def test_client_request_response_queue_carries_reply():
    q = queue.Queue(maxsize=1)
    req = ClientRequest("Append", "k", "v", resp=q)
    req.resp.put(ClientResponse(success=True))
    assert q.get_nowait().success is True


def test_append_entries_args_default_entries_are_independent():
    a = AppendEntriesArgs(term=1, leader_id=0, prev_log_index=-1, prev_log_term=-1)
    b = AppendEntriesArgs(term=1, leader_id=0, prev_log_index=-1, prev_log_term=-1)
    a.entries.append(LogEntry(term=1, command="x"))
    assert b.entries == []
    assert a.leader_commit == 0


def test_reply_defaults():
    assert RequestVoteReply() == RequestVoteReply(term=0, vote_granted=False)
    assert AppendEntriesReply() == AppendEntriesReply(term=0, success=False)


def test_node_state_holds_values():
    ns = NodeState(State.LEADER, 3, 1)
    assert (ns.state, ns.term, ns.leader_id) == (State.LEADER, 3, 1)
    assert str(ns.state) == "Leader"


def test_apply_msg_and_vote_args_fields():
    msg = ApplyMsg(command_valid=True, command="cmd", command_index=2)
    assert msg.command == "cmd" and msg.command_index == 2
    args = RequestVoteArgs(term=2, candidate_id=1, last_log_index=-1, last_log_term=-1)
    assert args == RequestVoteArgs(2, 1, -1, -1)