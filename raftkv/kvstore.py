"""A replicated key/value store that applies commands committed by a Raft node."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Optional

from raftkv.messages import ApplyMsg, ClientRequest, ClientResponse, State
from raftkv.node import RaftNode

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_NOTIFY_TIMEOUT = 0.1
_PUT_SEND_TIMEOUT = 0.5
_APPEND_SEND_TIMEOUT = 1.0
_REPLY_TIMEOUT = 1.0


class KVStore:
    """String key/value map kept in step with a Raft node's committed log.

    A background thread takes committed commands from the node's apply
    queue; ``close`` stops it.
    """

    def __init__(self, node: RaftNode) -> None:
        apply_queue = node.apply_queue
        if apply_queue is None:
            raise ValueError(f"node {node.node_id} has no apply queue")
        self._node = node
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._apply_committed,
            args=(apply_queue,),
            name=f"kvstore-{node.node_id}",
            daemon=True,
        )
        self._thread.start()

    def __enter__(self) -> "KVStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _apply_committed(self, apply_queue: "Queue[ApplyMsg]") -> None:
        while not self._stop_event.is_set():
            try:
                message = apply_queue.get(timeout=_POLL_INTERVAL)
            except Empty:
                continue
            if not message.command_valid:
                continue
            request = message.command
            if not isinstance(request, ClientRequest):
                continue

            with self._lock:
                if request.op == "Put":
                    self._data[request.key] = request.value
                elif request.op == "Append":
                    self._data[request.key] = self._data.get(request.key, "") + request.value

            if request.resp is not None:
                try:
                    request.resp.put(ClientResponse(success=True), timeout=_NOTIFY_TIMEOUT)
                except Full:
                    pass

    def _submit(
        self, op: str, key: str, value: str, send_timeout: float
    ) -> Optional[ClientResponse]:
        """Hand a request to the node; return its response, or None on timeout."""
        responses: "Queue[ClientResponse]" = Queue(maxsize=1)
        request = ClientRequest(op=op, key=key, value=value, resp=responses)
        try:
            self._node.client_queue.put(request, timeout=send_timeout)
        except Full:
            logger.warning("%s timeout: could not send request to raft", op)
            return None
        try:
            return responses.get(timeout=_REPLY_TIMEOUT)
        except Empty:
            logger.warning("%s timeout: no response from raft", op)
            return None

    def put(self, key: str, value: str) -> bool:
        """Set ``key`` to ``value`` through the cluster; True if accepted."""
        response = self._submit("Put", key, value, _PUT_SEND_TIMEOUT)
        if response is None:
            state = self._node.get_state()
            if state.state is State.LEADER:
                logger.warning("Node is leader but request timed out")
            else:
                logger.warning("Node is not leader (state: %s)", state.state)
            return False
        if not response.success:
            leader_id = self._node.get_leader_id()
            if leader_id >= 0:
                logger.info("Put failed - current leader is node %d", leader_id)
            else:
                logger.info("Put failed - no leader elected")
        return response.success

    def append(self, key: str, value: str) -> bool:
        """Append ``value`` to the value of ``key``; True if accepted."""
        response = self._submit("Append", key, value, _APPEND_SEND_TIMEOUT)
        return response is not None and response.success

    def get(self, key: str) -> Optional[str]:
        """Return the locally applied value of ``key``, or None if absent."""
        with self._lock:
            return self._data.get(key)

    def snapshot(self) -> bytes:
        """Serialize the data as ``key=value`` lines."""
        with self._lock:
            return b"".join(
                f"{key}={value}\n".encode("utf-8", errors="surrogateescape")
                for key, value in self._data.items()
            )

    def restore_snapshot(self, data: bytes) -> None:
        """Replace the data with the contents of a snapshot.

        Only newline-terminated lines are read. The key ends at the first
        ``=``; any further ``=`` characters are dropped from the value.
        Lines with an empty key are skipped.
        """
        restored: dict[str, str] = {}
        for line in bytes(data).split(b"\n")[:-1]:
            key, _, rest = line.partition(b"=")
            if not key:
                continue
            value = rest.replace(b"=", b"")
            restored[key.decode("utf-8", errors="surrogateescape")] = value.decode(
                "utf-8", errors="surrogateescape"
            )
        with self._lock:
            self._data = restored

    def close(self) -> None:
        """Stop applying committed commands and wait for the worker thread."""
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join()