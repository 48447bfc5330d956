import threading
import time

import pytest

from goim.job.config import default_config
from goim.job.job import Job
from goim.job.room import Room
from goim.logic.balancer import Instance
from goim.model import PushMessage, PushType
from goim.protocol import Op, Proto


def wait_until(pred, timeout=2.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if pred():
            return True
        time.sleep(0.005)
    return pred()


class FakeComet:
    def __init__(self, instance):
        self.instance = instance
        self.pushes = []
        self.broadcasts = []
        self.rooms = []
        self.cancelled = False
        self.closed = False
        self.lock = threading.Lock()

    def push(self, request):
        self.pushes.append(request)

    def broadcast(self, request):
        self.broadcasts.append(request)

    def broadcast_room(self, request):
        with self.lock:
            self.rooms.append(request)

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.closed = True


@pytest.fixture
def job():
    config = default_config()
    config.env.zone = "sh001"
    created = []

    def factory(instance, comet_config):
        comet = FakeComet(instance)
        created.append(comet)
        return comet

    j = Job(config, factory)
    j.created = created
    yield j
    j.close()


def zone(*hosts):
    return {"sh001": [Instance(hostname=h, zone="sh001") for h in hosts]}


def test_update_comets_creates_by_hostname(job):
    job.update_comets(zone("c1", "c2"))
    assert sorted(job.comet_servers) == ["c1", "c2"]
    assert len(job.created) == 2


def test_update_comets_empty_zone_raises(job):
    with pytest.raises(ValueError):
        job.update_comets({"other": [Instance(hostname="c1")]})


def test_update_comets_reuses_and_cancels(job):
    job.update_comets(zone("c1", "c2"))
    first = dict(job.comet_servers)
    job.update_comets(zone("c1", "c3"))
    assert job.comet_servers["c1"] is first["c1"]
    assert first["c2"].cancelled is True
    assert len(job.created) == 3


def test_push_keys_wraps_frame_as_raw(job):
    job.update_comets(zone("c1"))
    job.push(PushMessage(type=PushType.PUSH, operation=1000, server="c1", keys=["k"], msg=b"hi"))
    request = job.comet_servers["c1"].pushes[0]
    assert request.keys == ["k"]
    assert request.proto_op == 1000
    assert request.proto.op == Op(9)
    assert request.proto.body == Proto(ver=1, op=1000, body=b"hi").encode()


def test_push_keys_to_unknown_server_is_ignored(job):
    job.update_comets(zone("c1"))
    job.push(PushMessage(type=PushType.PUSH, operation=1000, server="nope", keys=["k"], msg=b"hi"))
    assert job.comet_servers["c1"].pushes == []


def test_broadcast_splits_speed(job):
    job.update_comets(zone("c1", "c2"))
    job.push(PushMessage(type=PushType.BROADCAST, operation=1000, speed=10, msg=b"all"))
    for comet in job.comet_servers.values():
        assert len(comet.broadcasts) == 1
        assert comet.broadcasts[0].speed == 5
        assert comet.broadcasts[0].proto_op == 1000


def test_room_message_reaches_every_comet(job):
    job.config.room.signal = 0.05
    job.update_comets(zone("c1", "c2"))
    job.push(PushMessage(type=PushType.ROOM, operation=1000, room="test://1", msg=b"x"))
    comets = list(job.comet_servers.values())
    assert wait_until(lambda: all(len(c.rooms) == 1 for c in comets))
    request = comets[0].rooms[0]
    assert request.room_id == "test://1"
    assert request.proto.op == Op(9)
    assert request.proto.body == Proto(ver=1, op=1000, body=b"x").encode()


def test_get_room_is_cached_until_deleted(job):
    room = job.get_room("test://1")
    assert isinstance(room, Room)
    assert job.get_room("test://1") is room
    job.del_room("test://1")
    other = job.get_room("test://1")
    assert other is not room
    room.close()


def test_consume_skips_bad_messages(job):
    job.update_comets(zone("c1"))
    good = PushMessage(type=PushType.PUSH, operation=1000, server="c1", keys=["k"], msg=b"m").to_bytes()
    job.consume([b"\xff", good])
    pushes = job.comet_servers["c1"].pushes
    assert [p.keys for p in pushes] == [["k"]]


def test_close_closes_comets(job):
    job.update_comets(zone("c1"))
    comet = job.comet_servers["c1"]
    job.close()
    assert comet.closed is True
    assert job.comet_servers == {}