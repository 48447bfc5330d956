import re

import pytest

from goim.comet.whitelist import Whitelist


def test_contains_only_positive_listed(tmp_path):
    with Whitelist([1, 2], tmp_path / "white.log") as wl:
        assert wl.contains(1)
        assert wl.contains(2)
        assert not wl.contains(3)


def test_non_positive_never_contained(tmp_path):
    with Whitelist([0, -1], tmp_path / "white.log") as wl:
        assert not wl.contains(0)
        assert not wl.contains(-1)


def test_log_appends_timestamped_lines(tmp_path):
    path = tmp_path / "white.log"
    with Whitelist([1], path) as wl:
        wl.log("key: a auth\n")
    with Whitelist([1], path) as wl:
        wl.log("key: b signal")
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].endswith(" key: a auth")
    assert lines[1].endswith(" key: b signal")
    assert re.match(r"^\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} ", lines[0])


def test_unwritable_path_raises(tmp_path):
    with pytest.raises(OSError):
        Whitelist([1], tmp_path / "missing" / "white.log")