"""Thread-safe storage for a node's persistent state and snapshot."""

from __future__ import annotations

import json
import threading
from typing import Any, Optional

from raftkv.messages import ClientRequest, LogEntry


class Persister:
    """Holds the serialized Raft state and the latest snapshot in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._raft_state: Optional[bytes] = None
        self._snapshot: Optional[bytes] = None

    def copy(self) -> "Persister":
        """Return an independent persister holding the same data."""
        with self._lock:
            clone = Persister()
            clone._raft_state = self._raft_state
            clone._snapshot = self._snapshot
            return clone

    def save_raft_state(self, data: Optional[bytes]) -> None:
        with self._lock:
            self._raft_state = _frozen(data)

    def read_raft_state(self) -> Optional[bytes]:
        with self._lock:
            return self._raft_state

    def save_state_and_snapshot(
        self, state: Optional[bytes], snapshot: Optional[bytes]
    ) -> None:
        """Store the Raft state and a snapshot together."""
        with self._lock:
            self._raft_state = _frozen(state)
            self._snapshot = _frozen(snapshot)

    def read_snapshot(self) -> Optional[bytes]:
        with self._lock:
            return self._snapshot

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raft_state) if self._raft_state is not None else 0


def _frozen(data: Optional[bytes]) -> Optional[bytes]:
    return None if data is None else bytes(data)


def _encode_command(command: Any) -> dict:
    if isinstance(command, ClientRequest):
        return {
            "kind": "client_request",
            "op": command.op,
            "key": command.key,
            "value": command.value,
        }
    return {"kind": "value", "value": command}


def _decode_command(raw: Any) -> Any:
    if not isinstance(raw, dict) or "kind" not in raw:
        raise ValueError(f"malformed command record: {raw!r}")
    if raw["kind"] == "client_request":
        return ClientRequest(op=raw["op"], key=raw["key"], value=raw["value"])
    if raw["kind"] == "value":
        return raw.get("value")
    raise ValueError(f"unknown command kind: {raw['kind']!r}")


def encode_state(current_term: int, voted_for: int, log: list[LogEntry]) -> bytes:
    """Serialize the persistent Raft state.

    Response queues attached to client requests are dropped. Raises
    TypeError if a command cannot be serialized.
    """
    record = {
        "current_term": current_term,
        "voted_for": voted_for,
        "log": [
            {"term": entry.term, "command": _encode_command(entry.command)}
            for entry in log
        ],
    }
    return json.dumps(record, separators=(",", ":")).encode("utf-8")


def decode_state(data: Optional[bytes]) -> Optional[tuple[int, int, list[LogEntry]]]:
    """Restore ``(current_term, voted_for, log)`` from bytes.

    Returns None when there is no data; raises ValueError when the data
    cannot be decoded.
    """
    if not data:
        return None
    try:
        record = json.loads(bytes(data).decode("utf-8"))
        current_term = record["current_term"]
        voted_for = record["voted_for"]
        raw_log = record["log"]
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as exc:
        raise ValueError(f"cannot decode raft state: {exc}") from exc
    if not isinstance(current_term, int) or not isinstance(voted_for, int):
        raise ValueError("term and vote must be integers")
    if not isinstance(raw_log, list):
        raise ValueError("log must be a list")
    log = []
    for raw in raw_log:
        if not isinstance(raw, dict) or not isinstance(raw.get("term"), int):
            raise ValueError(f"malformed log entry: {raw!r}")
        log.append(LogEntry(term=raw["term"], command=_decode_command(raw.get("command"))))
    return current_term, voted_for, log