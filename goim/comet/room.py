"""A room: the channels that joined it on one bucket."""

from __future__ import annotations

import threading
from collections.abc import Iterator

from goim.comet.channel import Channel
from goim.errors import RoomDroppedError, SignalFullError
from goim.protocol import Proto


class Room:
    """Doubly linked list of channels with an online count."""

    def __init__(self, room_id: str) -> None:
        self.id = room_id
        self.online = 0
        self.all_online = 0
        self._head: Channel | None = None
        self._drop = False
        self._lock = threading.RLock()

    def _channels(self) -> Iterator[Channel]:
        ch = self._head
        while ch is not None:
            nxt = ch.next
            yield ch
            ch = nxt

    def __iter__(self) -> Iterator[Channel]:
        with self._lock:
            return iter(list(self._channels()))

    def put(self, ch: Channel) -> None:
        """Insert a channel at the head; raise RoomDroppedError once the room emptied."""
        with self._lock:
            if self._drop:
                raise RoomDroppedError()
            if self._head is not None:
                self._head.prev = ch
            ch.next = self._head
            ch.prev = None
            self._head = ch
            self.online += 1

    def delete(self, ch: Channel) -> bool:
        """Remove a channel; return True when the room is now empty and dropped."""
        with self._lock:
            if ch.next is not None:
                ch.next.prev = ch.prev
            if ch.prev is not None:
                ch.prev.next = ch.next
            else:
                self._head = ch.next
            ch.next = None
            ch.prev = None
            self.online -= 1
            self._drop = self.online == 0
            return self._drop

    def push(self, proto: Proto) -> None:
        """Queue a frame on every channel, dropping it where a queue is full."""
        with self._lock:
            for ch in self._channels():
                try:
                    ch.push(proto)
                except SignalFullError:
                    pass

    def close(self) -> None:
        """Tell every channel's dispatcher to finish."""
        with self._lock:
            for ch in self._channels():
                ch.close()

    def online_num(self) -> int:
        """The cluster-wide count when known, otherwise the local count."""
        if self.all_online > 0:
            return self.all_online
        return self.online