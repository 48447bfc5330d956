from goim.comet.bucket import Bucket
from goim.comet.channel import Channel
from goim.protocol import PROTO_FINISH, Proto


def make_channel(key, ip="127.0.0.1"):
    ch = Channel(5, 10)
    ch.key = key
    ch.ip = ip
    return ch


def test_put_with_room():
    b = Bucket(2, 16)
    ch = make_channel("k1")
    b.put("test://1", ch)
    assert b.channel("k1") is ch
    assert b.channel_count() == 1
    room = b.room("test://1")
    assert ch.room is room
    assert room.online == 1
    assert b.rooms() == {"test://1"}
    assert b.rooms_count() == {"test://1": 1}


def test_put_without_room():
    b = Bucket(1, 16)
    ch = make_channel("k1")
    b.put("", ch)
    assert ch.room is None
    assert b.room_count() == 0


def test_put_same_key_closes_old_channel():
    b = Bucket(1, 16)
    old = make_channel("k1")
    new = make_channel("k1")
    b.put("", old)
    b.put("", new)
    assert old.ready() is PROTO_FINISH
    assert b.channel("k1") is new


def test_delete_removes_channel_room_and_ip():
    b = Bucket(1, 16)
    ch = make_channel("k1", "10.0.0.1")
    b.put("test://1", ch)
    assert b.ip_count() == {"10.0.0.1"}
    b.delete(ch)
    assert b.channel("k1") is None
    assert b.room("test://1") is None
    assert b.ip_count() == set()


def test_ip_count_tracks_multiple_channels():
    b = Bucket(1, 16)
    a = make_channel("a", "10.0.0.1")
    c = make_channel("c", "10.0.0.1")
    b.put("", a)
    b.put("", c)
    b.delete(a)
    assert b.ip_count() == {"10.0.0.1"}
    b.delete(c)
    assert b.ip_count() == set()


def test_change_room_moves_and_leaves():
    b = Bucket(1, 16)
    ch = make_channel("k1")
    b.put("test://1", ch)
    b.change_room("test://2", ch)
    assert ch.room is b.room("test://2")
    assert b.room("test://1") is None
    b.change_room("", ch)
    assert ch.room is None
    assert b.room("test://2") is None


def test_broadcast_respects_watch():
    b = Bucket(1, 16)
    watcher = make_channel("a")
    watcher.watch(1000)
    other = make_channel("b")
    b.put("", watcher)
    b.put("", other)
    proto = Proto(op=1000, body=b"hi")
    b.broadcast(proto, 1000)
    assert watcher.ready() is proto
    other.close()
    assert other.ready() is PROTO_FINISH


def test_broadcast_room_delivered_by_worker():
    b = Bucket(4, 16)
    ch = make_channel("k1")
    b.put("test://1", ch)
    proto = Proto(op=1000, body=b"room")
    b.broadcast_room("test://1", proto)
    assert ch.ready() is proto


def test_up_rooms_count_sets_all_online():
    b = Bucket(1, 16)
    ch = make_channel("k1")
    b.put("test://1", ch)
    b.up_rooms_count({"test://1": 100})
    assert b.room("test://1").online_num() == 100
    b.up_rooms_count({})
    assert b.room("test://1").all_online == 0


def test_del_room_closes_channels():
    b = Bucket(1, 16)
    ch = make_channel("k1")
    b.put("test://1", ch)
    b.del_room(b.room("test://1"))
    assert b.room("test://1") is None
    assert ch.ready() is PROTO_FINISH