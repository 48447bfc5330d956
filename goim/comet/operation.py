"""Handling of client frames other than heartbeats."""

from __future__ import annotations

import logging
from collections.abc import Callable

from goim.comet.bucket import Bucket
from goim.comet.channel import Channel
from goim.errors import CometError
from goim.protocol import Op, Proto

logger = logging.getLogger(__name__)

_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1


def _split_int32s(text: str, sep: str = ",") -> list[int]:
    if not text:
        return []
    values = []
    for part in text.split(sep):
        value = int(part)
        if not _INT32_MIN <= value <= _INT32_MAX:
            raise ValueError(f"value {part!r} out of int32 range")
        values.append(value)
    return values


def _body_text(proto: Proto) -> str:
    return (proto.body or b"").decode("utf-8", errors="replace")


def operate(
    proto: Proto,
    channel: Channel,
    bucket: Bucket,
    receive: Callable[[int, Proto], None],
) -> None:
    """Apply a client frame in place, turning it into the reply to send back."""
    if proto.op == Op.CHANGE_ROOM:
        try:
            bucket.change_room(_body_text(proto), channel)
        except CometError as exc:
            logger.error("change room(%s) error(%s)", proto.body, exc)
        proto.op = Op.CHANGE_ROOM_REPLY
    elif proto.op == Op.SUB:
        try:
            channel.watch(*_split_int32s(_body_text(proto)))
        except ValueError:
            pass
        proto.op = Op.SUB_REPLY
    elif proto.op == Op.UNSUB:
        try:
            channel.unwatch(*_split_int32s(_body_text(proto)))
        except ValueError:
            pass
        proto.op = Op.UNSUB_REPLY
    else:
        try:
            receive(channel.mid, proto)
        except Exception as exc:
            logger.error("receive(%d) op:%d error(%s)", channel.mid, proto.op, exc)
        proto.body = None