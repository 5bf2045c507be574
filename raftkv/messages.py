"""Message and state types exchanged between Raft nodes and their clients."""

from __future__ import annotations

import enum
import queue
from dataclasses import dataclass, field
from typing import Any, Optional


class State(enum.IntEnum):
    """Role a Raft node currently plays."""

    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2

    def __str__(self) -> str:
        return self.name.capitalize()


@dataclass
class LogEntry:
    """A single replicated log entry."""

    term: int
    command: Any = None


@dataclass
class ApplyMsg:
    """Notification that a committed command is ready to be applied."""

    command_valid: bool
    command: Any
    command_index: int


@dataclass
class ClientResponse:
    """Outcome of a client request."""

    success: bool = False
    value: str = ""
    leader: int = 0


@dataclass
class ClientRequest:
    """A key/value operation submitted by a client.

    ``resp`` is an optional queue on which the node reports the outcome.
    It is not part of the request's identity and is never persisted.
    """

    op: str
    key: str
    value: str = ""
    resp: Optional["queue.Queue[ClientResponse]"] = field(
        default=None, compare=False, repr=False
    )


@dataclass(frozen=True)
class NodeState:
    """Point-in-time view of a node's role, term and known leader."""

    state: State
    term: int
    leader_id: int


@dataclass
class RequestVoteArgs:
    """Arguments of a RequestVote call."""

    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class RequestVoteReply:
    """Reply to a RequestVote call."""

    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    """Arguments of an AppendEntries call; empty ``entries`` is a heartbeat."""

    term: int
    leader_id: int
    prev_log_index: int
    prev_log_term: int
    entries: list[LogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesReply:
    """Reply to an AppendEntries call."""

    term: int = 0
    success: bool = False