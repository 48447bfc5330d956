"""A shard of the comet server's channels and rooms."""

from __future__ import annotations

import itertools
import queue
import threading

from goim.comet.channel import Channel
from goim.comet.room import Room
from goim.errors import SignalFullError
from goim.protocol import Proto


class Bucket:
    """Channels by key and rooms by id, with worker threads for room broadcasts."""

    def __init__(self, routine_amount: int, routine_size: int) -> None:
        if routine_amount < 1:
            raise ValueError("routine amount must be positive")
        self._lock = threading.RLock()
        self._chs: dict[str, Channel] = {}
        self._rooms: dict[str, Room] = {}
        self._ip_cnts: dict[str, int] = {}
        self._counter = itertools.count(1)
        self._routines: list[queue.Queue[tuple[str, Proto]]] = []
        for i in range(routine_amount):
            routine: queue.Queue[tuple[str, Proto]] = queue.Queue(maxsize=routine_size)
            self._routines.append(routine)
            threading.Thread(
                target=self._roomproc, args=(routine,), name=f"bucket-room-{i}", daemon=True
            ).start()

    def channel_count(self) -> int:
        """Number of channels in the bucket."""
        return len(self._chs)

    def room_count(self) -> int:
        """Number of rooms in the bucket."""
        return len(self._rooms)

    def rooms_count(self) -> dict[str, int]:
        """Online count of every room that has someone in it."""
        with self._lock:
            return {rid: room.online for rid, room in self._rooms.items() if room.online > 0}

    def change_room(self, room_id: str, ch: Channel) -> None:
        """Move a channel to another room, or out of any room when room_id is empty."""
        old = ch.room
        if not room_id:
            if old is not None and old.delete(ch):
                self.del_room(old)
            ch.room = None
            return
        with self._lock:
            new = self._rooms.get(room_id)
            if new is None:
                new = self._rooms[room_id] = Room(room_id)
        if old is not None and old.delete(ch):
            self.del_room(old)
        new.put(ch)
        ch.room = new

    def put(self, room_id: str, ch: Channel) -> None:
        """Register a channel, replacing and closing any channel with the same key."""
        room = None
        with self._lock:
            old = self._chs.get(ch.key)
            if old is not None:
                old.close()
            self._chs[ch.key] = ch
            if room_id:
                room = self._rooms.get(room_id)
                if room is None:
                    room = self._rooms[room_id] = Room(room_id)
                ch.room = room
            self._ip_cnts[ch.ip] = self._ip_cnts.get(ch.ip, 0) + 1
        if room is not None:
            room.put(ch)

    def delete(self, ch: Channel) -> None:
        """Unregister a channel and drop its room if that leaves it empty."""
        room = ch.room
        with self._lock:
            current = self._chs.get(ch.key)
            if current is not None:
                if current is ch:
                    del self._chs[ch.key]
                if self._ip_cnts.get(current.ip, 0) > 1:
                    self._ip_cnts[current.ip] -= 1
                else:
                    self._ip_cnts.pop(current.ip, None)
        if room is not None and room.delete(ch):
            self.del_room(room)

    def channel(self, key: str) -> Channel | None:
        """The channel registered under a key, if any."""
        with self._lock:
            return self._chs.get(key)

    def broadcast(self, proto: Proto, op: int) -> None:
        """Queue a frame on every channel that watches the operation."""
        with self._lock:
            for ch in self._chs.values():
                if not ch.need_push(op):
                    continue
                try:
                    ch.push(proto)
                except SignalFullError:
                    pass

    def room(self, room_id: str) -> Room | None:
        """The room with the id, if any."""
        with self._lock:
            return self._rooms.get(room_id)

    def del_room(self, room: Room) -> None:
        """Forget a room and tell its channels to finish."""
        with self._lock:
            self._rooms.pop(room.id, None)
        room.close()

    def broadcast_room(self, room_id: str, proto: Proto) -> None:
        """Hand a room broadcast to the next worker thread."""
        idx = next(self._counter) % len(self._routines)
        self._routines[idx].put((room_id, proto))

    def rooms(self) -> set[str]:
        """Ids of rooms that have someone in them."""
        with self._lock:
            return {rid for rid, room in self._rooms.items() if room.online > 0}

    def ip_count(self) -> set[str]:
        """Distinct client addresses connected to the bucket."""
        with self._lock:
            return set(self._ip_cnts)

    def up_rooms_count(self, room_counts: dict[str, int]) -> None:
        """Record cluster-wide online counts on every room."""
        with self._lock:
            for rid, room in self._rooms.items():
                room.all_online = room_counts.get(rid, 0)

    def _roomproc(self, routine: queue.Queue[tuple[str, Proto]]) -> None:
        while True:
            room_id, proto = routine.get()
            room = self.room(room_id)
            if room is not None:
                room.push(proto)