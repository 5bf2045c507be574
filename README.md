# raftkv

raftkv is a small Raft cluster that runs entirely inside one Python process. A
replicated key-value store sits on top of it. Each node is a `RaftNode` that
runs on its own background thread. Nodes talk to each other through direct
method calls. Each node has a `KVStore`, which applies committed log entries to
an in-memory dictionary.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## The interactive shell

```
raftkv --id 0 --size 3
```

This starts a cluster of `--size` nodes (3 by default) and waits two seconds so
that a leader can be elected. It then opens a prompt attached to node `--id`
(0 by default). The single-dash forms `-id` and `-size` are accepted too. If
`--id` is outside the range `0` to `size - 1`, the cluster runs with no prompt
until it is interrupted.

Commands at the prompt:

| command                | effect                                         |
|------------------------|------------------------------------------------|
| `put <key> <value>`    | set the value of a key                         |
| `append <key> <value>` | append to the value of a key                   |
| `get <key>`            | show the value in this node's local store      |
| `state`                | show the node's role, term and known leader    |
| `exit`                 | leave the shell (end of input does the same)   |

Any other command prints the list above.

Writes are accepted only by the current leader. On any other node, `put` and
`append` print `... result: false`, followed by the leader this node knows of
or `No leader currently elected`. The leader reports success as soon as it has
appended the request to its own log. The value then appears in each node's
store when that node applies the committed entry, so a `get` on a follower can
briefly return an older value.

## Using it from Python

```python
from raftkv.cli import build_cluster, execute_command

nodes, stores = build_cluster(3)
for node in nodes:
    node.start()
try:
    print(execute_command("state", stores[0], nodes[0]))
finally:
    for node in nodes:
        node.stop()
    for store in stores:
        store.close()
```

`execute_command` returns the text the shell would print. It returns `None` for
`exit` and an empty string for a blank line.

The package has these modules:

- `raftkv.node`:
  - `RaftNode` handles elections, heartbeats, log replication, and the
    `request_vote` and `append_entries` calls made by its peers.
  - `start` and `stop` run and halt the node's thread; `run` runs the same
    loop in the calling thread.
  - `get_state` returns a `NodeState` with the role, term and known leader.
  - `get_leader_id` returns the known leader, or -1.
  - `peer_ids` lists the ids of a sequence of nodes.
- `raftkv.kvstore`:
  - `KVStore` provides `put` and `append`, which go through the node and return
    `True` or `False`, and `get`, which reads locally and returns `None` for a
    missing key.
  - `snapshot` and `restore_snapshot` convert the data to and from `key=value`
    lines.
  - `close` stops the thread that applies committed entries. A `KVStore` can
    also be used as a context manager.
- `raftkv.persistence`:
  - `Persister` holds a node's serialized state and a snapshot in memory.
  - `encode_state` and `decode_state` convert the term, the vote and the log to
    and from bytes.
- `raftkv.messages`: the types that nodes exchange, such as `State`,
  `LogEntry`, `ApplyMsg`, `ClientRequest`, `ClientResponse`, `NodeState`, and
  the request-vote and append-entries argument and reply types.

## What it does not do

- There is no networking. All nodes live in one process and call each other
  directly, so a cluster cannot span processes or machines.
- State is not stored on disk. `Persister` keeps everything in memory, so a
  cluster loses its data when the process exits.
- Snapshots are never taken or installed automatically, and the log is never
  compacted. `KVStore.snapshot` and `KVStore.restore_snapshot` only run when
  they are called.
- Cluster membership is fixed once `build_cluster` has connected the nodes.