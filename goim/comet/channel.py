"""A connected client as seen by the comet server."""

from __future__ import annotations

import queue
import threading
from typing import TYPE_CHECKING

from goim.errors import SignalFullError
from goim.protocol import PROTO_FINISH, PROTO_READY, Proto
from goim.ring import Ring

if TYPE_CHECKING:
    from goim.comet.room import Room


class Channel:
    """Holds a client's frames and the queue the dispatcher reads from."""

    def __init__(self, cli: int, svr: int) -> None:
        if svr < 1:
            raise ValueError("server proto queue size must be positive")
        self.room: Room | None = None
        self.cli_proto = Ring(cli)
        self.next: Channel | None = None
        self.prev: Channel | None = None
        self.mid = 0
        self.key = ""
        self.ip = ""
        self._signal: queue.Queue[Proto] = queue.Queue(maxsize=svr)
        self._watch_ops: set[int] = set()
        self._lock = threading.Lock()

    def watch(self, *args: int) -> None:
        """Start accepting pushes for the given operations."""
        with self._lock:
            self._watch_ops.update(args)

    def unwatch(self, *args: int) -> None:
        """Stop accepting pushes for the given operations."""
        with self._lock:
            self._watch_ops.difference_update(args)

    def need_push(self, op: int) -> bool:
        """Whether the channel watches the operation."""
        with self._lock:
            return op in self._watch_ops

    def push(self, proto: Proto) -> None:
        """Queue a server frame; raise SignalFullError when the queue is full."""
        try:
            self._signal.put_nowait(proto)
        except queue.Full:
            raise SignalFullError() from None

    def ready(self) -> Proto:
        """Block until a frame or a control marker is available and return it."""
        return self._signal.get()

    def signal(self) -> None:
        """Tell the dispatcher that client frames are ready."""
        self._signal.put(PROTO_READY)

    def close(self) -> None:
        """Tell the dispatcher to finish."""
        self._signal.put(PROTO_FINISH)