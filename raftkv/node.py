"""A Raft consensus node that replicates client requests among in-process peers."""

from __future__ import annotations

import logging
import random
import threading
import time
from queue import Empty, Full, Queue
from typing import Iterable, Optional

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
from raftkv.persistence import Persister, decode_state, encode_state

logger = logging.getLogger(__name__)

ELECTION_TIMEOUT_MIN = 0.150
ELECTION_TIMEOUT_MAX = 0.300
HEARTBEAT_INTERVAL = 0.050
_POLL_INTERVAL = 0.050

NO_LEADER = -1
NO_VOTE = -1


def _random_election_timeout() -> float:
    return random.uniform(ELECTION_TIMEOUT_MIN, ELECTION_TIMEOUT_MAX)


def peer_ids(peers: Iterable[Optional["RaftNode"]]) -> list[int]:
    """Return the ids of the given peers, skipping missing ones."""
    return [peer.node_id for peer in peers if peer is not None]


class RaftNode:
    """One member of a Raft cluster.

    Peers are other ``RaftNode`` objects in the same process; remote calls
    are plain method calls made without holding this node's lock.
    """

    def __init__(
        self,
        node_id: int,
        peers: Optional[Iterable[Optional["RaftNode"]]],
        persister: Persister,
        apply_queue: Optional["Queue[ApplyMsg]"],
    ) -> None:
        self._lock = threading.RLock()
        self._id = node_id
        self._peers: list[Optional[RaftNode]] = list(peers or [])
        self._persister = persister
        self._apply_queue = apply_queue
        self._client_queue: "Queue[ClientRequest]" = Queue()

        self._current_term = 0
        self._voted_for = NO_VOTE
        self._log: list[LogEntry] = []

        self._commit_index = -1
        self._last_applied = -1
        self._state = State.FOLLOWER
        self._current_leader = NO_LEADER

        self._next_index: list[int] = []
        self._match_index: list[int] = []

        self._election_timeout = _random_election_timeout()
        self._last_heard = time.monotonic()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._read_persist(persister.read_raft_state())

    # ------------------------------------------------------------------
    # Accessors and configuration

    @property
    def node_id(self) -> int:
        return self._id

    @property
    def apply_queue(self) -> Optional["Queue[ApplyMsg]"]:
        return self._apply_queue

    @property
    def client_queue(self) -> "Queue[ClientRequest]":
        with self._lock:
            return self._client_queue

    def set_client_queue(self, queue: "Queue[ClientRequest]") -> None:
        """Replace the queue from which client requests are taken."""
        with self._lock:
            self._client_queue = queue

    def update_peers(self, peers: Iterable[Optional["RaftNode"]]) -> None:
        with self._lock:
            self._peers = list(peers)
            if self._state is State.LEADER:
                self._init_leader_indices()
            logger.info("Node %d updated peers: %s", self._id, peer_ids(self._peers))

    def get_leader_id(self) -> int:
        """Return the id of the leader this node knows of, or -1."""
        with self._lock:
            return self._current_leader

    def get_state(self) -> NodeState:
        with self._lock:
            return NodeState(
                state=self._state,
                term=self._current_term,
                leader_id=self._current_leader,
            )

    # ------------------------------------------------------------------
    # Persistence

    def _persist(self) -> None:
        self._persister.save_raft_state(
            encode_state(self._current_term, self._voted_for, self._log)
        )

    def _read_persist(self, data: Optional[bytes]) -> None:
        try:
            restored = decode_state(data)
        except ValueError as exc:
            logger.warning("Node %d failed to restore state: %s", self._id, exc)
            return
        if restored is None:
            return
        self._current_term, self._voted_for, self._log = restored

    # ------------------------------------------------------------------
    # Remote calls

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        """Handle a candidate's request for this node's vote."""
        with self._lock:
            if args.term < self._current_term:
                logger.debug(
                    "Node %d rejecting vote for stale term %d < %d",
                    self._id, args.term, self._current_term,
                )
                return RequestVoteReply(term=self._current_term, vote_granted=False)

            if args.term > self._current_term:
                self._step_down(args.term)

            last_index, last_term = self._last_log_info()
            up_to_date = args.last_log_term > last_term or (
                args.last_log_term == last_term and args.last_log_index >= last_index
            )

            if self._voted_for in (NO_VOTE, args.candidate_id) and up_to_date:
                self._voted_for = args.candidate_id
                self._last_heard = time.monotonic()
                self._persist()
                logger.info(
                    "Node %d granted vote to %d for term %d",
                    self._id, args.candidate_id, args.term,
                )
                return RequestVoteReply(term=self._current_term, vote_granted=True)

            logger.info(
                "Node %d denied vote to %d (voted_for=%d, up_to_date=%s)",
                self._id, args.candidate_id, self._voted_for, up_to_date,
            )
            return RequestVoteReply(term=self._current_term, vote_granted=False)

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        """Handle log replication or a heartbeat from a leader."""
        with self._lock:
            if args.term < self._current_term:
                return AppendEntriesReply(term=self._current_term, success=False)

            self._last_heard = time.monotonic()
            if args.term > self._current_term:
                self._step_down(args.term)
            elif self._state is not State.FOLLOWER:
                self._state = State.FOLLOWER
            self._current_leader = args.leader_id

            if args.prev_log_index >= 0 and (
                args.prev_log_index >= len(self._log)
                or self._log[args.prev_log_index].term != args.prev_log_term
            ):
                return AppendEntriesReply(term=self._current_term, success=False)

            if args.entries:
                insert_at = args.prev_log_index + 1
                for offset, entry in enumerate(args.entries):
                    position = insert_at + offset
                    if position >= len(self._log) or self._log[position].term != entry.term:
                        self._log = self._log[:position] + [
                            LogEntry(term=e.term, command=e.command)
                            for e in args.entries[offset:]
                        ]
                        break
                self._persist()

            if args.leader_commit > self._commit_index:
                last_new = args.prev_log_index + len(args.entries)
                new_commit = min(args.leader_commit, last_new, len(self._log) - 1)
                if new_commit > self._commit_index:
                    self._commit_index = new_commit
            self._apply_logs()

            return AppendEntriesReply(term=self._current_term, success=True)

    # ------------------------------------------------------------------
    # Internal state transitions (callers hold the lock)

    def _step_down(self, term: int) -> None:
        self._state = State.FOLLOWER
        self._current_term = term
        self._voted_for = NO_VOTE
        self._last_heard = time.monotonic()
        self._persist()

    def _last_log_info(self) -> tuple[int, int]:
        if not self._log:
            return -1, -1
        return len(self._log) - 1, self._log[-1].term

    def _init_leader_indices(self) -> None:
        self._next_index = [len(self._log)] * len(self._peers)
        self._match_index = [-1] * len(self._peers)

    def _become_leader(self) -> None:
        if self._state is not State.CANDIDATE:
            return
        self._state = State.LEADER
        self._current_leader = self._id
        self._init_leader_indices()
        logger.info("Node %d became leader for term %d", self._id, self._current_term)

    def _update_commit_index(self) -> None:
        if not self._log:
            return
        matches = sorted([*self._match_index, len(self._log) - 1], reverse=True)
        candidate = matches[len(matches) // 2]
        if (
            self._commit_index < candidate < len(self._log)
            and self._log[candidate].term == self._current_term
        ):
            self._commit_index = candidate
            self._apply_logs()

    def _apply_logs(self) -> None:
        while (
            self._last_applied < self._commit_index
            and self._last_applied + 1 < len(self._log)
        ):
            index = self._last_applied + 1
            if self._apply_queue is not None:
                message = ApplyMsg(
                    command_valid=True,
                    command=self._log[index].command,
                    command_index=index,
                )
                try:
                    self._apply_queue.put_nowait(message)
                except Full:
                    return
            self._last_applied = index

    # ------------------------------------------------------------------
    # Elections and replication (called without the lock held)

    def _start_election(self) -> None:
        with self._lock:
            if self._state is State.LEADER:
                return
            self._state = State.CANDIDATE
            self._current_term += 1
            self._voted_for = self._id
            self._persist()
            term = self._current_term
            last_index, last_term = self._last_log_info()
            peers = list(self._peers)
            votes = 1
            won = votes > len(peers) // 2
            if won:
                self._become_leader()

        logger.info("Node %d starting election for term %d", self._id, term)

        args = RequestVoteArgs(
            term=term,
            candidate_id=self._id,
            last_log_index=last_index,
            last_log_term=last_term,
        )
        for peer in peers:
            if won:
                break
            if peer is None or peer.node_id == self._id:
                continue
            reply = peer.request_vote(args)
            with self._lock:
                if reply.term > self._current_term:
                    self._step_down(reply.term)
                    return
                if self._state is not State.CANDIDATE or self._current_term != term:
                    return
                if reply.vote_granted:
                    votes += 1
                    if votes > len(peers) // 2:
                        self._become_leader()
                        won = True

        if won:
            self._broadcast_append_entries(heartbeat=True)

    def _broadcast_append_entries(self, heartbeat: bool) -> None:
        with self._lock:
            if self._state is not State.LEADER:
                return
            calls = []
            for i, peer in enumerate(self._peers):
                if peer is None or peer.node_id == self._id:
                    continue
                next_idx = self._next_index[i]
                prev_index = next_idx - 1
                prev_term = (
                    self._log[prev_index].term
                    if 0 <= prev_index < len(self._log)
                    else -1
                )
                entries = [] if heartbeat else list(self._log[next_idx:])
                calls.append(
                    (
                        i,
                        peer,
                        AppendEntriesArgs(
                            term=self._current_term,
                            leader_id=self._id,
                            prev_log_index=prev_index,
                            prev_log_term=prev_term,
                            entries=entries,
                            leader_commit=self._commit_index,
                        ),
                    )
                )

        for i, peer, args in calls:
            reply = peer.append_entries(args)
            with self._lock:
                if reply.term > self._current_term:
                    self._step_down(reply.term)
                    return
                if self._state is not State.LEADER or self._current_term != args.term:
                    return
                if i >= len(self._next_index):
                    continue
                if reply.success:
                    self._next_index[i] = args.prev_log_index + len(args.entries) + 1
                    self._match_index[i] = self._next_index[i] - 1
                    self._update_commit_index()
                else:
                    self._next_index[i] = max(0, self._next_index[i] - 1)

    def _handle_client_request(self, request: ClientRequest) -> None:
        with self._lock:
            if self._state is not State.LEADER:
                _respond(request, ClientResponse(leader=self._current_leader))
                return
            self._log.append(LogEntry(term=self._current_term, command=request))
            self._persist()
        _respond(request, ClientResponse(success=True))
        self._broadcast_append_entries(heartbeat=False)

    # ------------------------------------------------------------------
    # Main loop

    def _reset_election_timer(self) -> None:
        with self._lock:
            self._election_timeout = _random_election_timeout()
            self._last_heard = time.monotonic()

    def run(self) -> None:
        """Serve elections, heartbeats and client requests until stopped."""
        self._reset_election_timer()
        next_heartbeat = time.monotonic()
        while not self._stop_event.is_set():
            now = time.monotonic()
            with self._lock:
                is_leader = self._state is State.LEADER
                deadline = self._last_heard + self._election_timeout
                client_queue = self._client_queue

            if is_leader:
                if now >= next_heartbeat:
                    self._broadcast_append_entries(heartbeat=True)
                    next_heartbeat = now + HEARTBEAT_INTERVAL
                wait = next_heartbeat - now
            else:
                if now >= deadline:
                    self._start_election()
                    self._reset_election_timer()
                    next_heartbeat = time.monotonic()
                    continue
                wait = deadline - now

            try:
                request = client_queue.get(timeout=max(0.001, min(wait, _POLL_INTERVAL)))
            except Empty:
                continue
            self._handle_client_request(request)

    def start(self) -> threading.Thread:
        """Run the node on a background daemon thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError(f"node {self._id} is already running")
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self.run, name=f"raft-node-{self._id}", daemon=True
            )
            self._thread.start()
            return self._thread

    def stop(self) -> None:
        """Stop the main loop and wait for its thread to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None


def _respond(request: ClientRequest, response: ClientResponse) -> None:
    if request.resp is None:
        return
    try:
        request.resp.put_nowait(response)
    except Full:
        pass