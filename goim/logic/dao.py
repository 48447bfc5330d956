"""Session mappings and online counts in Redis, and push messages for the job service."""

from __future__ import annotations

import logging
import struct
from collections import defaultdict
from types import TracebackType
from typing import Any, Protocol

import redis

from goim.logic.config import Config
from goim.model import Online, PushMessage, PushType

logger = logging.getLogger(__name__)

_SHARDS = 64

_M32 = 0xFFFFFFFF
_C1 = 0xCC9E2D51
_C2 = 0x1B873593


class _Publisher(Protocol):
    """Anything that can put a keyed message on a topic."""

    def send(self, topic: str, key: bytes, value: bytes) -> None: ...


def _key_mid_server(mid: int) -> str:
    return f"mid_{mid}"


def _key_key_server(key: str) -> str:
    return f"key_{key}"


def _key_server_online(server: str) -> str:
    return f"ol_{server}"


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _rotate(value: int, shift: int) -> int:
    if shift == 0:
        return value
    return ((value >> shift) | (value << (32 - shift))) & _M32


def _fmix(h: int) -> int:
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _M32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _M32
    h ^= h >> 16
    return h


def _mur(a: int, h: int) -> int:
    a = (a * _C1) & _M32
    a = _rotate(a, 17)
    a = (a * _C2) & _M32
    h ^= a
    h = _rotate(h, 19)
    return (h * 5 + 0xE6546B64) & _M32


def _fetch32(data: bytes, offset: int) -> int:
    return struct.unpack_from("<I", data, offset)[0]


def _bswap32(value: int) -> int:
    return int.from_bytes(value.to_bytes(4, "little"), "big")


def _scramble(value: int) -> int:
    return (_rotate((value * _C1) & _M32, 17) * _C2) & _M32


def _cityhash32(data: bytes) -> int:
    """32-bit CityHash of a byte string."""
    n = len(data)
    if n <= 4:
        b, c = 0, 9
        for byte in data:
            signed = byte - 256 if byte >= 128 else byte
            b = (b * _C1 + signed) & _M32
            c ^= b
        return _fmix(_mur(b, _mur(n, c)))
    if n <= 12:
        a = (n + _fetch32(data, 0)) & _M32
        b = (n * 5 + _fetch32(data, n - 4)) & _M32
        c = (9 + _fetch32(data, (n >> 1) & 4)) & _M32
        d = (n * 5) & _M32
        return _fmix(_mur(c, _mur(b, _mur(a, d))))
    if n <= 24:
        a = _fetch32(data, (n >> 1) - 4)
        b = _fetch32(data, 4)
        c = _fetch32(data, n - 8)
        d = _fetch32(data, n >> 1)
        e = _fetch32(data, 0)
        f = _fetch32(data, n - 4)
        return _fmix(_mur(f, _mur(e, _mur(d, _mur(c, _mur(b, _mur(a, n)))))))

    h = n & _M32
    g = (_C1 * n) & _M32
    f = g
    a0 = _scramble(_fetch32(data, n - 4))
    a1 = _scramble(_fetch32(data, n - 8))
    a2 = _scramble(_fetch32(data, n - 16))
    a3 = _scramble(_fetch32(data, n - 12))
    a4 = _scramble(_fetch32(data, n - 20))
    h = (_rotate(h ^ a0, 19) * 5 + 0xE6546B64) & _M32
    h = (_rotate(h ^ a2, 19) * 5 + 0xE6546B64) & _M32
    g = (_rotate(g ^ a1, 19) * 5 + 0xE6546B64) & _M32
    g = (_rotate(g ^ a3, 19) * 5 + 0xE6546B64) & _M32
    f = (_rotate((f + a4) & _M32, 19) * 5 + 0xE6546B64) & _M32
    for pos in range(0, 20 * ((n - 1) // 20), 20):
        a0 = _scramble(_fetch32(data, pos))
        a1 = _fetch32(data, pos + 4)
        a2 = _scramble(_fetch32(data, pos + 8))
        a3 = _scramble(_fetch32(data, pos + 12))
        a4 = _fetch32(data, pos + 16)
        h = (_rotate(h ^ a0, 18) * 5 + 0xE6546B64) & _M32
        f = (_rotate((f + a1) & _M32, 19) * _C1) & _M32
        g = (_rotate((g + a2) & _M32, 18) * 5 + 0xE6546B64) & _M32
        h = (_rotate(h ^ ((a3 + a1) & _M32), 19) * 5 + 0xE6546B64) & _M32
        g = (_bswap32(g ^ a4) * 5) & _M32
        h = _bswap32((h + a4 * 5) & _M32)
        f = (f + a0) & _M32
        f, h, g = g, f, h
    g = (_rotate(g, 11) * _C1) & _M32
    g = (_rotate(g, 17) * _C1) & _M32
    f = (_rotate(f, 11) * _C1) & _M32
    f = (_rotate(f, 17) * _C1) & _M32
    h = _rotate((h + g) & _M32, 19)
    h = (h * 5 + 0xE6546B64) & _M32
    h = (_rotate(h, 17) * _C1) & _M32
    h = _rotate((h + f) & _M32, 19)
    h = (h * 5 + 0xE6546B64) & _M32
    h = (_rotate(h, 17) * _C1) & _M32
    return h


def _shard(room: str) -> int:
    return _cityhash32(room.encode("utf-8")) % _SHARDS


class Dao:
    """Data access for the logic service: Redis state and the push message queue."""

    def __init__(self, redis_client: Any, publisher: _Publisher, topic: str, expire: float) -> None:
        self.redis = redis_client
        self.publisher = publisher
        self.topic = topic
        self.expire = int(expire)
        self._closed = False

    @classmethod
    def from_config(cls, config: Config, publisher: _Publisher) -> Dao:
        """Build a Dao whose Redis client follows the configuration."""
        rc = config.redis
        options: dict[str, Any] = {
            "socket_connect_timeout": rc.dial_timeout or None,
            "socket_timeout": rc.read_timeout or None,
            "max_connections": rc.active or None,
        }
        password = rc.auth or None
        if rc.network == "unix":
            client = redis.Redis(unix_socket_path=rc.addr, password=password, **options)
        else:
            host, sep, port = rc.addr.rpartition(":")
            if not sep or not port.isdigit():
                raise ValueError(f"invalid redis address {rc.addr!r}")
            client = redis.Redis(
                host=host or "localhost", port=int(port), password=password, **options
            )
        return cls(client, publisher, config.kafka.topic, config.redis.expire)

    def _client(self) -> Any:
        if self._closed:
            raise redis.ConnectionError("redis: get on closed pool")
        return self.redis

    def close(self) -> None:
        """Release the Redis connections; later calls fail."""
        self._closed = True
        self.redis.close()

    def __enter__(self) -> Dao:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def ping(self) -> None:
        """Check that Redis answers."""
        self._client().set("PING", "PONG")

    def add_mapping(self, mid: int, key: str, server: str) -> None:
        """Record mid -> key:server and key -> server, both expiring."""
        pipe = self._client().pipeline(transaction=False)
        if mid > 0:
            pipe.hset(_key_mid_server(mid), key, server)
            pipe.expire(_key_mid_server(mid), self.expire)
        pipe.set(_key_key_server(key), server)
        pipe.expire(_key_key_server(key), self.expire)
        try:
            pipe.execute()
        except redis.RedisError as exc:
            logger.error("add mapping(%d,%s,%s) error(%s)", mid, key, server, exc)
            raise

    def expire_mapping(self, mid: int, key: str) -> bool:
        """Renew the mapping's expiry; return whether the key mapping exists."""
        pipe = self._client().pipeline(transaction=False)
        if mid > 0:
            pipe.expire(_key_mid_server(mid), self.expire)
        pipe.expire(_key_key_server(key), self.expire)
        try:
            results = pipe.execute()
        except redis.RedisError as exc:
            logger.error("expire mapping(%d,%s) error(%s)", mid, key, exc)
            raise
        return bool(results[-1])

    def del_mapping(self, mid: int, key: str, server: str) -> bool:
        """Remove the mapping; return whether the key mapping existed."""
        pipe = self._client().pipeline(transaction=False)
        if mid > 0:
            pipe.hdel(_key_mid_server(mid), key)
        pipe.delete(_key_key_server(key))
        try:
            results = pipe.execute()
        except redis.RedisError as exc:
            logger.error("del mapping(%d,%s,%s) error(%s)", mid, key, server, exc)
            raise
        return bool(results[-1])

    def servers_by_keys(self, keys: list[str]) -> list[str]:
        """The server of each key, with "" where a key is unknown."""
        if not keys:
            raise ValueError("no keys given")
        names = [_key_key_server(key) for key in keys]
        try:
            values = self._client().mget(names)
        except redis.RedisError as exc:
            logger.error("MGET %s error(%s)", names, exc)
            raise
        return ["" if v is None else _text(v) for v in values]

    def keys_by_mids(self, mids: list[int]) -> tuple[dict[str, str], list[int]]:
        """Map every key of the members to its server, and list members that are online."""
        pipe = self._client().pipeline(transaction=False)
        for mid in mids:
            pipe.hgetall(_key_mid_server(mid))
        try:
            results = pipe.execute()
        except redis.RedisError as exc:
            logger.error("HGETALL %s error(%s)", mids, exc)
            raise
        servers: dict[str, str] = {}
        online: list[int] = []
        for mid, mapping in zip(mids, results):
            if mapping:
                online.append(mid)
            for key, server in (mapping or {}).items():
                servers[_text(key)] = _text(server)
        return servers, online

    def add_server_online(self, server: str, online: Online) -> None:
        """Store a server's room counts, split over hash fields by room."""
        shards: dict[int, dict[str, int]] = defaultdict(dict)
        for room, count in online.room_count.items():
            shards[_shard(room)][room] = count
        key = _key_server_online(server)
        for shard, rooms in shards.items():
            part = Online(server=online.server, room_count=rooms, updated=online.updated)
            self._add_server_online(key, str(shard), part)

    def _add_server_online(self, key: str, field: str, online: Online) -> None:
        pipe = self._client().pipeline(transaction=False)
        pipe.hset(key, field, online.to_json())
        pipe.expire(key, self.expire)
        try:
            pipe.execute()
        except redis.RedisError as exc:
            logger.error("HSET %s %s error(%s)", key, field, exc)
            raise

    def server_online(self, server: str) -> Online:
        """Gather a server's room counts from all its hash fields, skipping unreadable ones."""
        result = Online()
        key = _key_server_online(server)
        for shard in range(_SHARDS):
            part = self._server_online(key, str(shard))
            if part is None:
                continue
            result.server = part.server
            result.updated = max(result.updated, part.updated)
            result.room_count.update(part.room_count)
        return result

    def _server_online(self, key: str, field: str) -> Online | None:
        try:
            raw = self._client().hget(key, field)
        except redis.RedisError as exc:
            logger.error("HGET %s %s error(%s)", key, field, exc)
            return None
        if raw is None:
            return None
        try:
            return Online.from_json(raw)
        except ValueError as exc:
            logger.error("server online decode(%r) error(%s)", raw, exc)
            return None

    def del_server_online(self, server: str) -> None:
        """Forget a server's room counts."""
        key = _key_server_online(server)
        try:
            self._client().delete(key)
        except redis.RedisError as exc:
            logger.error("DEL %s error(%s)", key, exc)
            raise

    def _publish(self, key: str, message: PushMessage) -> None:
        try:
            self.publisher.send(self.topic, key.encode("utf-8"), message.to_bytes())
        except Exception as exc:
            logger.error("publish(%s) error(%s)", message, exc)
            raise

    def push_msg(self, op: int, server: str, keys: list[str], msg: bytes) -> None:
        """Queue a message for the given keys on one comet server."""
        if not keys:
            raise ValueError("no keys given")
        message = PushMessage(
            type=PushType.PUSH, operation=op, server=server, keys=list(keys), msg=msg
        )
        self._publish(keys[0], message)

    def broadcast_room_msg(self, op: int, room: str, msg: bytes) -> None:
        """Queue a message for everyone in a room."""
        message = PushMessage(type=PushType.ROOM, operation=op, room=room, msg=msg)
        self._publish(room, message)

    def broadcast_msg(self, op: int, speed: int, msg: bytes) -> None:
        """Queue a message for every connection."""
        message = PushMessage(type=PushType.BROADCAST, operation=op, speed=speed, msg=msg)
        self._publish(str(op), message)