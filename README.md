# goim

Building blocks for a push-based instant messaging service, split the way a
deployment is split:

- **protocol** – the binary frame every client speaks: a 16-byte big-endian
  header (packet length, header length, version, operation, sequence)
  followed by a body of at most 4096 bytes.
- **comet** – per-connection state kept by the servers clients connect to:
  channels, rooms, buckets, the whitelist and handling of client operations.
- **logic** – Redis data access for the key → server mapping and online
  counts, publishing of push messages, and balancing of clients across comet
  nodes.
- **job** – the consumer that takes published push messages and fans them
  out to comet servers, batching room messages.

## The wire protocol

`goim.protocol.Proto` is one frame. `Op` names the operations (handshake,
heartbeat, auth, room change, subscribe and so on).

```python
from goim.protocol import Op, Proto

frame = Proto(ver=1, op=Op.AUTH, seq=0, body=b'{"mid": 1, "room_id": "live://1000"}')
data = frame.encode()

same = Proto.from_message(data)
assert same.op == Op.AUTH
```

`Proto.read_from` reads one frame from a binary stream and `Proto.write_to`
writes one (a frame with `Op.RAW` is written as its body alone, since that
body already holds encoded frames). `Proto.encode_heartbeat(online)` builds a
heartbeat reply carrying a room's online count. A frame whose length is out
of range raises `PackLengthError`; one with a wrong header length raises
`HeaderLengthError`. Both derive from `ProtocolError`.

## Room keys and push messages

Rooms are addressed as `type://id`:

```python
from goim.model import encode_room_key, decode_room_key

key = encode_room_key("live", "1000")   # "live://1000"
typ, room = decode_room_key(key)        # ("live", "1000")
```

`goim.model.PushMessage` (with `PushType.PUSH`, `ROOM` or `BROADCAST`) is the
message handed from the logic side to the job; `to_bytes` and `from_bytes`
serialise it. `goim.model.Online` holds one server's room counts and
round-trips through `to_json` / `from_json`.

## Comet state

- `goim.ring.Ring` – a fixed, power-of-two sized ring of frames per
  connection; `set`/`set_adv` claim and commit a slot, `get`/`get_adv` read
  and release one. It raises `RingFullError` or `RingEmptyError` from
  `goim.errors`.
- `goim.comet.channel.Channel` – one connection: the operations it watches
  and a bounded queue of frames to send. A full queue raises
  `SignalFullError`.
- `goim.comet.room.Room` – the channels in a room and its online counts.
- `goim.comet.bucket.Bucket` – a shard of channels and rooms, with
  broadcasts to all channels or to one room through worker threads.
- `goim.comet.whitelist.Whitelist` – member ids whose activity is appended
  to a log file.
- `goim.comet.operation.operate` – handles room change, subscribe and
  unsubscribe frames and hands everything else to a receive callback.

## Logic pieces

- `goim.logic.dao.Dao` holds a Redis client and a publisher (any object with
  `send(topic, key, value)`). It keeps the mapping of members and keys to
  servers (`add_mapping`, `expire_mapping`, `del_mapping`,
  `servers_by_keys`, `keys_by_mids`), stores servers' room counts
  (`add_server_online`, `server_online`, `del_server_online`) and publishes
  `PushMessage` values (`push_msg`, `broadcast_room_msg`, `broadcast_msg`).
  `Dao.from_config` builds the Redis client from a logic configuration.
- `goim.logic.balancer.LoadBalancer` takes discovery `Instance` records
  through `update` and, through `node_addrs(region, domain, region_weight)`,
  returns the domains and addresses of the best comet nodes, so that
  connections follow the nodes' weights.

## Job

`goim.job.job.Job` takes serialized `PushMessage` values through `consume`
(or decoded ones through `push`) and routes them to `goim.job.comet.Comet`
workers: pushes to the server that holds the keys, room messages batched
through `goim.job.room.Room`, and broadcasts to every comet. The comets come
from a factory given to `Job`, called for each instance passed to
`update_comets`; a `Comet` calls `push_msg`, `broadcast` and `broadcast_room`
on the client object it is given.

## Configuration

Each service has a configuration module – `goim.comet.config`,
`goim.logic.config` and `goim.job.config` – with `parse_options` for
command-line flags and environment variables, `default_config` for the
built-in defaults and `load_config` to read a TOML file over them.
Durations in the TOML file are written as text such as `"5s"` or `"15m"`
and read with `goim.comet.config.parse_duration`.

## What the package does not do

- It opens no listeners: there is no TCP or websocket server, no RPC server
  and no HTTP push API. The pieces above are what such servers are built on.
- There is no service layer on the logic side that authenticates
  connections, answers online queries or publishes pushes by key, member,
  room or to all; `Dao` and `LoadBalancer` are the parts it would use.
- It ships no message-queue client, RPC client or service discovery: the
  publisher, the comet clients and the instance lists are supplied by the
  caller.
- It installs no commands.