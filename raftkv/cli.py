"""Command-line front end that runs an in-process cluster and a small shell."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from queue import Queue
from typing import Optional, Sequence

from raftkv.kvstore import KVStore
from raftkv.node import RaftNode, peer_ids
from raftkv.persistence import Persister

logger = logging.getLogger(__name__)

QUEUE_SIZE = 100
ELECTION_WAIT = 2.0

_HELP = "\n".join(
    [
        "Unknown command. Available commands:",
        "  put <key> <value>",
        "  append <key> <value>",
        "  get <key>",
        "  state - show node state",
        "  exit",
    ]
)


def build_cluster(size: int) -> tuple[list[RaftNode], list[KVStore]]:
    """Create ``size`` connected nodes and a store for each; nodes are not started."""
    if size < 1:
        raise ValueError(f"cluster size must be at least 1, got {size}")
    nodes = []
    for node_id in range(size):
        nodes.append(RaftNode(node_id, None, Persister(), Queue(maxsize=QUEUE_SIZE)))
        logger.info("Created node %d", node_id)

    for node in nodes:
        peers = [peer for peer in nodes if peer is not node]
        node.update_peers(peers)
        logger.info("Node %d peers updated: %s", node.node_id, peer_ids(peers))

    stores = []
    for node in nodes:
        node.set_client_queue(Queue(maxsize=QUEUE_SIZE))
        stores.append(KVStore(node))
        logger.info("Created KV store for node %d", node.node_id)
    return nodes, stores


def _leader_hint(node: RaftNode) -> str:
    leader_id = node.get_leader_id()
    if leader_id >= 0:
        return f"Current leader is node {leader_id}"
    return "No leader currently elected"


def _format_bool(flag: bool) -> str:
    return "true" if flag else "false"


def execute_command(line: str, store: KVStore, node: RaftNode) -> Optional[str]:
    """Run one shell command and return its output.

    Returns None for ``exit`` and an empty string for a blank line.
    """
    parts = line.split()
    if not parts:
        return ""
    op = parts[0].lower()

    if op in ("put", "append"):
        if len(parts) != 3:
            return f"Usage: {op} <key> <value>"
        if op == "put":
            success = store.put(parts[1], parts[2])
        else:
            success = store.append(parts[1], parts[2])
        output = f"{op.capitalize()} result: {_format_bool(success)}"
        if not success:
            output += "\n" + _leader_hint(node)
        return output

    if op == "get":
        if len(parts) != 2:
            return "Usage: get <key>"
        value = store.get(parts[1])
        return "Key not found" if value is None else f"Value: {value}"

    if op == "state":
        state = node.get_state()
        return f"Node state: {state.state}, Term: {state.term}, LeaderID: {state.leader_id}"

    if op == "exit":
        return None

    return _HELP


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an in-process Raft key/value cluster.")
    parser.add_argument("-id", "--id", dest="node_id", type=int, default=0, help="Node ID")
    parser.add_argument("-size", "--size", dest="size", type=int, default=3, help="Cluster size")
    args = parser.parse_args(argv)
    if args.size < 1:
        parser.error("cluster size must be at least 1")
    return args


def _shell(store: KVStore, node: RaftNode) -> None:
    print(f"Node {node.node_id} ready. Enter commands:")
    while True:
        print("> ", end="", flush=True)
        line = sys.stdin.readline()
        if not line:
            break
        output = execute_command(line.strip(), store, node)
        if output is None:
            break
        if output:
            print(output)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    nodes, stores = build_cluster(args.size)
    try:
        for node in nodes:
            node.start()
            logger.info("Started node %d", node.node_id)

        logger.info("Waiting for leader election...")
        time.sleep(ELECTION_WAIT)

        if 0 <= args.node_id < args.size:
            _shell(stores[args.node_id], nodes[args.node_id])
        else:
            print("Running in cluster mode...")
            try:
                threading.Event().wait()
            except KeyboardInterrupt:
                pass
    finally:
        for node in nodes:
            node.stop()
        for store in stores:
            store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())