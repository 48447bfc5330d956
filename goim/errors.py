"""Errors raised by the comet server."""

from __future__ import annotations


class CometError(Exception):
    """Base class for comet server errors."""

    default_message = "comet error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class HandshakeError(CometError):
    """The client handshake failed."""

    default_message = "handshake failed"


class OperationError(CometError):
    """The requested operation is not valid."""

    default_message = "request operation not valid"


class RingEmptyError(CometError):
    """There is nothing to read in the ring buffer."""

    default_message = "ring buffer empty"


class RingFullError(CometError):
    """There is no free slot in the ring buffer."""

    default_message = "ring buffer full"


class SignalFullError(CometError):
    """The channel's signal queue is full and the message was dropped."""

    default_message = "signal channel full, msg dropped"


class PushArgumentError(CometError):
    """A push request lacks keys or a frame."""

    default_message = "rpc pushmsg arg error"


class BroadcastArgumentError(CometError):
    """A broadcast request lacks a frame."""

    default_message = "rpc broadcast arg error"


class BroadcastRoomArgumentError(CometError):
    """A room broadcast request lacks a frame or a room id."""

    default_message = "rpc broadcast  room arg error"


class RoomDroppedError(CometError):
    """The room has been dropped and accepts no more channels."""

    default_message = "room droped"


class LogicUnavailableError(CometError):
    """The logic service cannot be reached."""

    default_message = "logic rpc is not available"