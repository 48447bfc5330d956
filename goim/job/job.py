"""The job service: turns queued push messages into calls on comet servers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence

from goim.job.comet import BroadcastRequest, BroadcastRoomRequest, Comet, PushRequest
from goim.job.config import CometConfig, Config
from goim.job.room import Room
from goim.logic.balancer import Instance
from goim.model import PushMessage, PushType
from goim.protocol import Op, Proto

logger = logging.getLogger(__name__)

# Frames already encoded and concatenated; written as they are.
_OP_RAW = Op(9)


def _raw_proto(op: int, body: bytes) -> Proto:
    return Proto(ver=1, op=_OP_RAW, body=Proto(ver=1, op=op, body=body).encode())


class Job:
    """Routes push messages to comet servers and batches room messages."""

    def __init__(self, config: Config, comet_factory: Callable[[Instance, CometConfig], Comet]) -> None:
        self.config = config
        self._comet_factory = comet_factory
        self.comet_servers: dict[str, Comet] = {}
        self._rooms: dict[str, Room] = {}
        self._rooms_lock = threading.Lock()
        self._comets_lock = threading.Lock()

    def update_comets(self, zone_instances: Mapping[str, Sequence[Instance]]) -> None:
        """Take the comet servers of this zone, keeping existing connections."""
        instances = zone_instances.get(self.config.env.zone) or []
        if not instances:
            raise ValueError("watchComet instance is empty")
        with self._comets_lock:
            current = self.comet_servers
            comets: dict[str, Comet] = {}
            for ins in instances:
                old = current.get(ins.hostname)
                if old is not None:
                    comets[ins.hostname] = old
                    continue
                try:
                    comets[ins.hostname] = self._comet_factory(ins, self.config.comet)
                except Exception as exc:
                    logger.error("watchComet NewComet(%s) error(%s)", ins, exc)
                    raise
                logger.info("watchComet AddComet grpc:%s", ins)
            for hostname, old in current.items():
                if hostname not in comets:
                    old.cancel()
                    logger.info("watchComet DelComet:%s", hostname)
            self.comet_servers = comets

    def push(self, message: PushMessage) -> None:
        """Deliver one push message according to its type."""
        if message.type == PushType.PUSH:
            self._push_keys(message.operation, message.server, list(message.keys), message.msg)
        elif message.type == PushType.ROOM:
            self.get_room(message.room).push(message.operation, message.msg)
        elif message.type == PushType.BROADCAST:
            self._broadcast(message.operation, message.msg, message.speed)
        else:
            raise ValueError(f"no match push type: {message.type}")

    def consume(self, messages: Iterable[bytes]) -> None:
        """Decode and deliver each serialized push message, logging failures."""
        for raw in messages:
            try:
                message = PushMessage.from_bytes(raw)
            except Exception as exc:
                logger.error("decode push message(%r) error(%s)", raw, exc)
                continue
            try:
                self.push(message)
            except Exception as exc:
                logger.error("push(%s) error(%s)", message, exc)
                continue
            logger.info("consume: %s", message)

    def _push_keys(self, operation: int, server_id: str, keys: list[str], body: bytes) -> None:
        request = PushRequest(keys=keys, proto=_raw_proto(operation, body), proto_op=operation)
        comets = self.comet_servers
        comet = comets.get(server_id)
        if comet is None:
            return
        comet.push(request)
        logger.info("pushKey:%s comets:%d", server_id, len(comets))

    def _broadcast(self, operation: int, body: bytes, speed: int) -> None:
        comets = self.comet_servers
        if not comets:
            logger.info("broadcast comets:0")
            return
        share = abs(speed) // len(comets)
        request = BroadcastRequest(
            proto=_raw_proto(operation, body),
            proto_op=operation,
            speed=share if speed >= 0 else -share,
        )
        for server_id, comet in comets.items():
            try:
                comet.broadcast(request)
            except Exception as exc:
                logger.error("broadcast serverID:%s error(%s)", server_id, exc)
        logger.info("broadcast comets:%d", len(comets))

    def _broadcast_room_raw(self, room_id: str, body: bytes) -> None:
        request = BroadcastRoomRequest(room_id=room_id, proto=Proto(ver=1, op=_OP_RAW, body=body))
        comets = self.comet_servers
        for server_id, comet in comets.items():
            try:
                comet.broadcast_room(request)
            except Exception as exc:
                logger.error("broadcastRoom roomID:%s serverID:%s error(%s)", room_id, server_id, exc)
        logger.info("broadcastRoom comets:%d", len(comets))

    def get_room(self, room_id: str) -> Room:
        """The batching room for an id, created on first use."""
        with self._rooms_lock:
            room = self._rooms.get(room_id)
            if room is None:
                rc = self.config.room
                room = Room(room_id, rc.batch, rc.signal, rc.idle, self._broadcast_room_raw, self.del_room)
                self._rooms[room_id] = room
                logger.info("new a room:%s active:%d", room_id, len(self._rooms))
            return room

    def del_room(self, room_id: str) -> None:
        """Forget a room."""
        with self._rooms_lock:
            self._rooms.pop(room_id, None)

    def close(self) -> None:
        """Stop every room and every comet connection."""
        with self._rooms_lock:
            rooms = list(self._rooms.values())
        for room in rooms:
            room.close()
        with self._comets_lock:
            comets = self.comet_servers
            self.comet_servers = {}
        for server_id, comet in comets.items():
            try:
                comet.close()
            except Exception as exc:
                logger.error("close comet %s error(%s)", server_id, exc)