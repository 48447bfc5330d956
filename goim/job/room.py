"""Room message batching: frames for a room are merged and sent together."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable

from goim.protocol import Proto

logger = logging.getLogger(__name__)

_READY = object()
_STOP = object()
_DEFAULT_IDLE = 60.0


class RoomFullError(Exception):
    """The room's frame queue is full and the frame was dropped."""

    def __init__(self, message: str = "room proto chan full") -> None:
        super().__init__(message)


class Room:
    """Collects a room's frames and broadcasts them in batches from its own thread."""

    def __init__(
        self,
        room_id: str,
        batch: int,
        signal: float,
        idle: float,
        broadcast: Callable[[str, bytes], object],
        on_exit: Callable[[str], object],
    ) -> None:
        if batch < 1:
            raise ValueError("batch must be positive")
        self.id = room_id
        self._batch = batch
        self._signal = signal
        self._idle = idle
        self._broadcast = broadcast
        self._on_exit = on_exit
        self._queue: queue.Queue[object] = queue.Queue(maxsize=batch * 2)
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._pushproc, name=f"room-{room_id}", daemon=True)
        self._thread.start()

    def push(self, op: int, msg: bytes) -> None:
        """Queue a frame; raise RoomFullError when the queue is full."""
        try:
            self._queue.put_nowait(Proto(ver=1, op=op, body=msg))
        except queue.Full:
            raise RoomFullError() from None

    def close(self) -> None:
        """Stop the room without sending what is still buffered."""
        self._stopped.set()
        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            pass
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def _pushproc(self) -> None:
        logger.info("start room:%s goroutine", self.id)
        buf = bytearray()
        n = 0
        last = 0.0
        deadline = time.monotonic() + self._signal
        while not self._stopped.is_set():
            timeout = max(0.0, deadline - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = _READY
            if item is _STOP:
                break
            if item is not _READY:
                buf += item.encode()  # type: ignore[attr-defined]
                n += 1
                now = time.monotonic()
                if n == 1:
                    last = now
                    deadline = now + self._signal
                    continue
                if n < self._batch and self._signal > now - last:
                    continue
            elif n == 0:
                break
            try:
                self._broadcast(self.id, bytes(buf))
            except Exception as exc:
                logger.error("room:%s broadcast error(%s)", self.id, exc)
            buf = bytearray()
            n = 0
            deadline = time.monotonic() + (self._idle if self._idle else _DEFAULT_IDLE)
        try:
            self._on_exit(self.id)
        finally:
            logger.info("room:%s goroutine exit", self.id)