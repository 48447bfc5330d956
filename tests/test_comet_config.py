import socket
import tomllib

import pytest

from goim.comet.config import (
    Options,
    default_config,
    load_config,
    parse_duration,
    parse_options,
)


def test_parse_duration_units_agree():
    assert parse_duration("1m30s") == parse_duration("90s")
    assert parse_duration("1h") == parse_duration("60m")
    assert parse_duration("1.5s") == parse_duration("1500ms")
    assert parse_duration("1s") == parse_duration("1000000us") == parse_duration("1000000000ns")


def test_parse_duration_plain_seconds():
    assert parse_duration("5s") == 5.0


def test_parse_duration_sign_and_zero():
    assert parse_duration("-2s") == -parse_duration("2s")
    assert parse_duration("+2s") == parse_duration("2s")
    assert parse_duration("0") == 0


@pytest.mark.parametrize("text", ["", "5", "s", ".s", "5x", "1.", "--1s", "1s5", "-"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_parse_options_flags():
    opts = parse_options(
        [
            "-conf=target/comet.toml",
            "-region=sh",
            "-zone",
            "sh001",
            "-deploy.env=dev",
            "-weight=10",
            "-addrs=127.0.0.1",
            "-debug=true",
        ],
        {},
    )
    assert opts.conf == "target/comet.toml"
    assert opts.region == "sh"
    assert opts.zone == "sh001"
    assert opts.deploy_env == "dev"
    assert opts.weight == 10
    assert opts.addrs == "127.0.0.1"
    assert opts.debug is True
    assert opts.offline is False


def test_parse_options_environment_fallback():
    environ = {
        "REGION": "bj",
        "ZONE": "bj001",
        "DEPLOY_ENV": "prod",
        "ADDRS": "10.0.0.1,10.0.0.2",
        "WEIGHT": "7",
        "OFFLINE": "true",
        "DEBUG": "1",
    }
    opts = parse_options([], environ)
    assert opts.region == "bj"
    assert opts.zone == "bj001"
    assert opts.deploy_env == "prod"
    assert opts.addrs == "10.0.0.1,10.0.0.2"
    assert opts.weight == 7
    assert opts.offline is True
    assert opts.debug is True


def test_flags_override_environment():
    opts = parse_options(["-region=sh", "-offline=false"], {"REGION": "bj", "OFFLINE": "true"})
    assert opts.region == "sh"
    assert opts.offline is False


def test_bad_environment_values_fall_back():
    opts = parse_options([], {"WEIGHT": "lots", "OFFLINE": "maybe", "DEBUG": "yes"})
    assert opts.weight == 0
    assert opts.offline is False
    assert opts.debug is False


def test_default_options():
    opts = parse_options([], {})
    assert opts.conf == "comet-example.toml"
    assert opts.host == socket.gethostname()


def test_bad_bool_flag_exits():
    with pytest.raises(SystemExit):
        parse_options(["-debug=perhaps"], {})


def test_default_config_from_options():
    opts = Options(
        region="sh",
        zone="sh001",
        deploy_env="dev",
        host="comet-1",
        addrs="10.0.0.1,10.0.0.2",
        weight=10,
        debug=True,
    )
    cfg = default_config(opts)
    assert cfg.debug is True
    assert cfg.env.addrs == ["10.0.0.1", "10.0.0.2"]
    assert cfg.env.weight == 10
    assert cfg.discovery == {"region": "sh", "zone": "sh001", "env": "dev", "host": "comet-1"}


def test_default_config_values():
    cfg = default_config(Options())
    assert cfg.tcp.bind == [":3101"]
    assert cfg.websocket.bind == [":3102"]
    assert cfg.rpc_server.addr == ":3109"
    assert cfg.rpc_server.network == "tcp"
    assert cfg.tcp.read_buf_size == 8192
    assert cfg.tcp.sndbuf == 4096
    assert cfg.protocol.timer_size == 2048
    assert cfg.bucket.routine_size == 1024
    assert cfg.protocol.handshake_timeout == parse_duration("5s")
    assert cfg.rpc_server.max_life_time == parse_duration("2h")
    assert cfg.rpc_server.idle_timeout == parse_duration("1m")
    assert cfg.websocket.tls_open is False


def test_default_configs_are_independent():
    first = default_config(Options())
    second = default_config(Options())
    first.tcp.bind.append(":9999")
    assert second.tcp.bind == [":3101"]


def test_load_config_overlays_toml(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text(
        "debug = true\n"
        "[discovery]\n"
        'nodes = ["127.0.0.1:7171"]\n'
        "[tcp]\n"
        'bind = [":4000", ":4001"]\n'
        "keepalive = true\n"
        "[protocol]\n"
        'handshakeTimeout = "8s"\n'
        "[bucket]\n"
        "size = 16\n"
        "[whitelist]\n"
        "Whitelist = [123]\n"
        'WhiteLog = "white.log"\n',
        encoding="utf-8",
    )
    opts = Options(conf=str(path), region="sh")
    cfg = load_config(opts)
    base = default_config(opts)
    assert cfg.debug is True
    assert cfg.tcp.bind == [":4000", ":4001"]
    assert cfg.tcp.keep_alive is True
    assert cfg.tcp.sndbuf == base.tcp.sndbuf
    assert cfg.protocol.handshake_timeout == parse_duration("8s")
    assert cfg.protocol.cli_proto == base.protocol.cli_proto
    assert cfg.bucket.size == 16
    assert cfg.bucket.channel == base.bucket.channel
    assert cfg.whitelist.whitelist == [123]
    assert cfg.whitelist.white_log == "white.log"
    assert cfg.discovery["nodes"] == ["127.0.0.1:7171"]
    assert cfg.discovery["region"] == "sh"


def test_unknown_keys_are_ignored(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text("[tcp]\nunknownKey = 1\n[nothing]\nx = 2\n", encoding="utf-8")
    opts = Options(conf=str(path))
    assert load_config(opts) == default_config(opts)


def test_type_mismatch_raises(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text('[bucket]\nsize = "big"\n', encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(Options(conf=str(path)))


def test_bad_duration_raises(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text('[protocol]\nhandshakeTimeout = "soon"\n', encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(Options(conf=str(path)))


def test_invalid_toml_raises(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text("[tcp\n", encoding="utf-8")
    with pytest.raises(tomllib.TOMLDecodeError):
        load_config(Options(conf=str(path)))


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(Options(conf=str(tmp_path / "absent.toml")))