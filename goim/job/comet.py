"""Per-comet-server delivery: queues drained by worker threads that call the comet RPCs."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlsplit

from goim.protocol import Proto

logger = logging.getLogger(__name__)


class _CometClient(Protocol):
    """The RPC calls a comet server answers."""

    def push_msg(self, request: PushRequest) -> Any: ...

    def broadcast(self, request: BroadcastRequest) -> Any: ...

    def broadcast_room(self, request: BroadcastRoomRequest) -> Any: ...


@dataclass
class PushRequest:
    """A frame for some connection keys on one comet server."""

    keys: list[str] = field(default_factory=list)
    proto: Proto | None = None
    proto_op: int = 0


@dataclass
class BroadcastRequest:
    """A frame for every connection watching an operation."""

    proto: Proto | None = None
    proto_op: int = 0
    speed: int = 0


@dataclass
class BroadcastRoomRequest:
    """A frame for every connection in a room."""

    room_id: str = ""
    proto: Proto | None = None


def grpc_address(addrs: Iterable[str]) -> str:
    """The host:port of the last grpc:// address; ValueError when there is none."""
    addrs = list(addrs)
    found = ""
    for addr in addrs:
        try:
            parts = urlsplit(addr)
        except ValueError:
            continue
        if parts.scheme == "grpc":
            found = parts.netloc
    if not found:
        raise ValueError(f"invalid grpc address:{addrs}")
    return found


class Comet:
    """Spreads requests for one comet server over worker threads."""

    close_timeout = 5.0

    def __init__(self, server_id: str, client: _CometClient, routine_size: int, routine_chan: int) -> None:
        if routine_size < 1:
            raise ValueError("routine size must be positive")
        self.server_id = server_id
        self.client = client
        self._size = routine_size
        self._chan_cap = max(routine_chan, 1)
        self._broadcast_cap = routine_size
        self._push: list[deque[PushRequest]] = [deque() for _ in range(routine_size)]
        self._room: list[deque[BroadcastRoomRequest]] = [deque() for _ in range(routine_size)]
        self._broadcasts: deque[BroadcastRequest] = deque()
        self._push_num = 0
        self._room_num = 0
        self._cancelled = False
        self._cond = threading.Condition()
        self._workers = [
            threading.Thread(
                target=self._process, args=(i,), name=f"comet-{server_id}-{i}", daemon=True
            )
            for i in range(routine_size)
        ]
        for worker in self._workers:
            worker.start()

    def _enqueue(self, queue: deque[Any], capacity: int, request: Any) -> None:
        with self._cond:
            while True:
                if self._cancelled:
                    raise RuntimeError(f"comet {self.server_id} is closed")
                if len(queue) < capacity:
                    queue.append(request)
                    self._cond.notify_all()
                    return
                self._cond.wait()

    def push(self, request: PushRequest) -> None:
        """Queue a push for the next worker, waiting while its queue is full."""
        with self._cond:
            self._push_num += 1
            idx = self._push_num % self._size
        self._enqueue(self._push[idx], self._chan_cap, request)

    def broadcast_room(self, request: BroadcastRoomRequest) -> None:
        """Queue a room broadcast for the next worker, waiting while its queue is full."""
        with self._cond:
            self._room_num += 1
            idx = self._room_num % self._size
        self._enqueue(self._room[idx], self._chan_cap, request)

    def broadcast(self, request: BroadcastRequest) -> None:
        """Queue a broadcast for whichever worker is free."""
        self._enqueue(self._broadcasts, self._broadcast_cap, request)

    def _pending(self) -> int:
        return (
            len(self._broadcasts)
            + sum(len(q) for q in self._push)
            + sum(len(q) for q in self._room)
        )

    def _process(self, idx: int) -> None:
        push_q = self._push[idx]
        room_q = self._room[idx]
        while True:
            with self._cond:
                while not self._cancelled and not (self._broadcasts or room_q or push_q):
                    self._cond.wait()
                if self._cancelled:
                    return
                if self._broadcasts:
                    request: Any = self._broadcasts.popleft()
                elif room_q:
                    request = room_q.popleft()
                else:
                    request = push_q.popleft()
                self._cond.notify_all()
            self._send(request)

    def _send(self, request: Any) -> None:
        try:
            if isinstance(request, BroadcastRequest):
                self.client.broadcast(request)
            elif isinstance(request, BroadcastRoomRequest):
                self.client.broadcast_room(request)
            else:
                self.client.push_msg(request)
        except Exception as exc:
            logger.error("comet call(%s) serverId:%s error(%s)", request, self.server_id, exc)

    def cancel(self) -> None:
        """Stop the workers at once, leaving queued requests undelivered."""
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def close(self) -> None:
        """Wait for the queues to drain, then stop; TimeoutError if they do not drain in time."""
        with self._cond:
            drained = self._cond.wait_for(lambda: self._pending() == 0, timeout=self.close_timeout)
            pending = self._pending()
        self.cancel()
        if not drained:
            raise TimeoutError(
                f"close comet(server:{self.server_id} pending:{pending}) timeout"
            )
        logger.info("close comet finish")