import io
import struct

import pytest

from goim.protocol import (
    HEART_SIZE,
    MAX_BODY_SIZE,
    RAW_HEADER_SIZE,
    HeaderLengthError,
    Op,
    PackLengthError,
    Proto,
)


@pytest.mark.parametrize(
    ("op", "value"),
    [(Op.AUTH, 7), (Op.RAW, 9), (Op.UNSUB_REPLY, 17)],
)
def test_operation_values_on_the_wire(op, value):
    data = Proto(ver=1, op=op, seq=0).encode()
    assert struct.unpack(">i", data[8:12])[0] == value
    assert Proto.from_message(data).op == value


def test_encode_wire_bytes():
    proto = Proto(ver=1, op=Op.AUTH, seq=0, body=b"hi")
    assert proto.encode() == (
        b"\x00\x00\x00\x12\x00\x10\x00\x01\x00\x00\x00\x07\x00\x00\x00\x00hi"
    )


def test_encode_without_body_is_header_only():
    data = Proto(ver=1, op=Op.HEARTBEAT, seq=3).encode()
    assert len(data) == RAW_HEADER_SIZE
    assert struct.unpack(">i", data[:4])[0] == RAW_HEADER_SIZE


def test_stream_round_trip():
    original = Proto(ver=1, op=1000, seq=42, body=b'{"test":1}')
    stream = io.BytesIO()
    original.write_to(stream)
    stream.seek(0)
    assert Proto.read_from(stream) == original


def test_read_several_frames_in_sequence():
    frames = [Proto(ver=1, op=Op.SEND_MSG, seq=i, body=bytes([i]) * i) for i in range(1, 4)]
    stream = io.BytesIO(b"".join(f.encode() for f in frames))
    assert [Proto.read_from(stream) for _ in frames] == frames


def test_read_empty_body_gives_none():
    stream = io.BytesIO(Proto(ver=1, op=Op.HEARTBEAT, seq=1, body=b"").encode())
    assert Proto.read_from(stream).body is None


def test_raw_write_is_body_only():
    inner = Proto(ver=1, op=1000, body=b"payload").encode()
    stream = io.BytesIO()
    Proto(ver=1, op=Op.RAW, body=inner).write_to(stream)
    assert stream.getvalue() == inner


def test_heartbeat_carries_online():
    data = Proto(ver=1, op=Op.HEARTBEAT_REPLY, seq=5).encode_heartbeat(123)
    assert len(data) == RAW_HEADER_SIZE + HEART_SIZE
    decoded = Proto.from_message(data)
    assert decoded.op == Op.HEARTBEAT_REPLY
    assert struct.unpack(">i", decoded.body)[0] == 123


def test_message_round_trip():
    original = Proto(ver=1, op=Op.CHANGE_ROOM, seq=9, body=b"test://room")
    assert Proto.from_message(original.encode()) == original


def test_read_pack_too_long():
    header = struct.pack(">ihhii", MAX_BODY_SIZE + RAW_HEADER_SIZE + 1, RAW_HEADER_SIZE, 1, 4, 0)
    with pytest.raises(PackLengthError):
        Proto.read_from(io.BytesIO(header))


def test_read_bad_header_length():
    header = struct.pack(">ihhii", RAW_HEADER_SIZE, RAW_HEADER_SIZE + 2, 1, 4, 0)
    with pytest.raises(HeaderLengthError):
        Proto.read_from(io.BytesIO(header))


def test_read_truncated_stream():
    with pytest.raises(EOFError):
        Proto.read_from(io.BytesIO(b"\x00\x00"))


def test_read_truncated_body():
    data = Proto(ver=1, op=4, body=b"abcdef").encode()[:-2]
    with pytest.raises(EOFError):
        Proto.read_from(io.BytesIO(data))


def test_message_too_short():
    with pytest.raises(PackLengthError):
        Proto.from_message(b"\x00" * (RAW_HEADER_SIZE - 1))


def test_message_negative_pack_length():
    header = struct.pack(">ihhii", -1, RAW_HEADER_SIZE, 1, 4, 0)
    with pytest.raises(PackLengthError):
        Proto.from_message(header)


def test_message_bad_header_length():
    header = struct.pack(">ihhii", RAW_HEADER_SIZE, 12, 1, 4, 0)
    with pytest.raises(HeaderLengthError):
        Proto.from_message(header)