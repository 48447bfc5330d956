"""Binary frame format shared by clients, comet servers and the job pusher."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO


class Op(IntEnum):
    """Well-known protocol operations."""

    HANDSHAKE = 0
    HANDSHAKE_REPLY = 1
    HEARTBEAT = 2
    HEARTBEAT_REPLY = 3
    SEND_MSG = 4
    SEND_MSG_REPLY = 5
    DISCONNECT_REPLY = 6
    AUTH = 7
    AUTH_REPLY = 8
    RAW = 9
    PROTO_READY = 10
    PROTO_FINISH = 11
    CHANGE_ROOM = 12
    CHANGE_ROOM_REPLY = 13
    SUB = 14
    SUB_REPLY = 15
    UNSUB = 16
    UNSUB_REPLY = 17


MAX_BODY_SIZE = 1 << 12

PACK_SIZE = 4
HEADER_SIZE = 2
VER_SIZE = 2
OP_SIZE = 4
SEQ_SIZE = 4
HEART_SIZE = 4
RAW_HEADER_SIZE = PACK_SIZE + HEADER_SIZE + VER_SIZE + OP_SIZE + SEQ_SIZE
MAX_PACK_SIZE = MAX_BODY_SIZE + RAW_HEADER_SIZE

_HEADER = struct.Struct(">ihhii")
_ONLINE = struct.Struct(">i")


class ProtocolError(Exception):
    """A frame violates the wire format."""


class PackLengthError(ProtocolError):
    """The packet length field is out of range."""

    def __init__(self, message: str = "default server codec pack length error") -> None:
        super().__init__(message)


class HeaderLengthError(ProtocolError):
    """The header length field is not the fixed header size."""

    def __init__(self, message: str = "default server codec header length error") -> None:
        super().__init__(message)


def _wrap(value: int, bits: int) -> int:
    """Truncate an integer to a signed value of the given width."""
    mask = (1 << bits) - 1
    value &= mask
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = stream.read(size - len(chunks))
        if not chunk:
            raise EOFError(f"expected {size} bytes, got {len(chunks)}")
        chunks += chunk
    return bytes(chunks)


@dataclass
class Proto:
    """A single protocol frame."""

    ver: int = 0
    op: int = 0
    seq: int = 0
    body: bytes | None = None

    def _header(self, pack_len: int) -> bytes:
        return _HEADER.pack(
            _wrap(pack_len, 32),
            RAW_HEADER_SIZE,
            _wrap(self.ver, 16),
            _wrap(self.op, 32),
            _wrap(self.seq, 32),
        )

    def encode(self) -> bytes:
        """Return header and body as one frame."""
        body = self.body or b""
        return self._header(RAW_HEADER_SIZE + len(body)) + body

    def encode_heartbeat(self, online: int) -> bytes:
        """Return a heartbeat frame whose body carries the room online count."""
        pack_len = RAW_HEADER_SIZE + HEART_SIZE
        return self._header(pack_len) + _ONLINE.pack(_wrap(online, 32))

    def write_to(self, stream: BinaryIO) -> None:
        """Write the frame to a stream; raw frames are written as their body only."""
        if self.op == Op.RAW:
            if self.body:
                stream.write(self.body)
            return
        stream.write(self.encode())

    @classmethod
    def _parse_header(cls, buf: bytes) -> tuple[Proto, int, int]:
        pack_len, header_len, ver, op, seq = _HEADER.unpack_from(buf)
        return cls(ver=ver, op=op, seq=seq), pack_len, header_len

    @classmethod
    def read_from(cls, stream: BinaryIO) -> Proto:
        """Read one frame from a byte stream."""
        proto, pack_len, header_len = cls._parse_header(_read_exact(stream, RAW_HEADER_SIZE))
        if pack_len > MAX_PACK_SIZE:
            raise PackLengthError()
        if header_len != RAW_HEADER_SIZE:
            raise HeaderLengthError()
        body_len = pack_len - header_len
        proto.body = _read_exact(stream, body_len) if body_len > 0 else None
        return proto

    @classmethod
    def from_message(cls, buf: bytes) -> Proto:
        """Decode one frame carried whole in a message, such as a websocket frame."""
        if len(buf) < RAW_HEADER_SIZE:
            raise PackLengthError()
        proto, pack_len, header_len = cls._parse_header(buf)
        if pack_len < 0 or pack_len > MAX_PACK_SIZE:
            raise PackLengthError()
        if header_len != RAW_HEADER_SIZE:
            raise HeaderLengthError()
        body_len = pack_len - header_len
        if body_len > 0:
            if pack_len > len(buf):
                raise PackLengthError()
            proto.body = bytes(buf[header_len:pack_len])
        else:
            proto.body = None
        return proto


PROTO_READY = Proto(op=Op.PROTO_READY)
PROTO_FINISH = Proto(op=Op.PROTO_FINISH)