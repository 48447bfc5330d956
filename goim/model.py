"""Shared data model: instance metadata keys, online counts, room keys and push messages."""

from __future__ import annotations

import base64
import json
import unicodedata
from dataclasses import dataclass, field
from enum import IntEnum
from urllib.parse import urlsplit

META_WEIGHT = "weight"
META_OFFLINE = "offline"
META_ADDRS = "addrs"
META_IP_COUNT = "ip_count"
META_CONN_COUNT = "conn_count"

PLATFORM_WEB = "web"


def _loads(data: bytes | str) -> dict:
    value = json.loads(data)
    if not isinstance(value, dict):
        raise ValueError("expected a JSON object")
    return value


@dataclass
class Online:
    """Room online counts reported by one comet server."""

    server: str = ""
    room_count: dict[str, int] = field(default_factory=dict)
    updated: int = 0

    def to_json(self) -> bytes:
        """Serialise to compact JSON."""
        document = {
            "server": self.server,
            "room_count": dict(sorted(self.room_count.items())),
            "updated": self.updated,
        }
        return json.dumps(document, separators=(",", ":")).encode()

    @classmethod
    def from_json(cls, data: bytes | str) -> Online:
        """Parse the JSON produced by :meth:`to_json`."""
        document = _loads(data)
        room_count = document.get("room_count") or {}
        if not isinstance(room_count, dict):
            raise ValueError("room_count must be an object")
        return cls(
            server=str(document.get("server") or ""),
            room_count={str(k): int(v) for k, v in room_count.items()},
            updated=int(document.get("updated") or 0),
        )


@dataclass
class Top:
    """A room and its online count."""

    room_id: str
    count: int


class PushType(IntEnum):
    """Kind of push message handed from logic to job."""

    PUSH = 0
    ROOM = 1
    BROADCAST = 2


@dataclass
class PushMessage:
    """A message queued for the job service to deliver."""

    type: PushType = PushType.PUSH
    operation: int = 0
    speed: int = 0
    server: str = ""
    room: str = ""
    keys: list[str] = field(default_factory=list)
    msg: bytes = b""

    def to_bytes(self) -> bytes:
        """Serialise for the message queue."""
        document = {
            "type": int(self.type),
            "operation": self.operation,
            "speed": self.speed,
            "server": self.server,
            "room": self.room,
            "keys": list(self.keys),
            "msg": base64.b64encode(self.msg).decode("ascii"),
        }
        return json.dumps(document, separators=(",", ":")).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> PushMessage:
        """Parse bytes produced by :meth:`to_bytes`; raise ValueError when malformed."""
        document = _loads(data)
        try:
            return cls(
                type=PushType(int(document.get("type", 0))),
                operation=int(document.get("operation", 0)),
                speed=int(document.get("speed", 0)),
                server=str(document.get("server", "")),
                room=str(document.get("room", "")),
                keys=[str(k) for k in document.get("keys") or []],
                msg=base64.b64decode(document.get("msg", ""), validate=True),
            )
        except TypeError as exc:
            raise ValueError(f"malformed push message: {exc}") from exc


def encode_room_key(typ: str, room: str) -> str:
    """Join a room type and a room id into one key."""
    return f"{typ}://{room}"


def decode_room_key(key: str) -> tuple[str, str]:
    """Split a room key into its type and room id; raise ValueError when malformed."""
    if any(unicodedata.category(c) == "Cc" for c in key):
        raise ValueError(f"invalid control character in room key {key!r}")
    if key.startswith(":"):
        raise ValueError(f"missing protocol scheme in room key {key!r}")
    parts = urlsplit(key)
    if not parts.scheme and ":" in key.split("/", 1)[0]:
        raise ValueError(f"first path segment in room key {key!r} cannot contain colon")
    parts.port  # validates the port, raising ValueError when it is not numeric
    host = parts.netloc.rpartition("@")[2]
    return parts.scheme, host