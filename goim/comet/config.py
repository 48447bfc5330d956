"""Comet server configuration: command-line options, defaults and TOML overrides."""

import argparse
import os
import re
import socket
import sys
import tomllib
import types
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Union, get_args, get_origin

_DURATION_META = {"duration": True}

_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _duration(default: float = 0.0) -> Any:
    """A dataclass field holding a duration in seconds, read from TOML as text."""
    return field(default=default, metadata=_DURATION_META)


def parse_duration(value: str) -> float:
    """Parse a duration such as "300ms", "1.5h" or "2h45m" into seconds."""
    if not isinstance(value, str):
        raise ValueError(f"invalid duration {value!r}")
    text = value
    negative = False
    if text[:1] in ("+", "-"):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")
    total = 0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f"invalid duration {value!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {value!r}")
        scale = _UNIT_NANOS.get(unit)
        if scale is None:
            raise ValueError(f"unknown unit {unit!r} in duration {value!r}")
        total += int(whole or "0") * scale
        if fraction:
            total += int(fraction) * scale // 10 ** len(fraction)
        pos = match.end()
    limit = 1 << 63
    if total > limit or (total == limit and not negative):
        raise ValueError(f"invalid duration {value!r}")
    seconds = total / 1_000_000_000
    return -seconds if negative else seconds


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


_parse_bool.__name__ = "bool"


def _parse_flag_int(text: str) -> int:
    return int(text, 0)


_parse_flag_int.__name__ = "int"


def _env_bool(value: str | None) -> bool:
    try:
        return _parse_bool(value or "")
    except ValueError:
        return False


def _env_int(value: str | None, bits: int = 32) -> int:
    """Parse a decimal integer from the environment, clamping to the signed range."""
    if value is None or not _DECIMAL.fullmatch(value):
        return 0
    number = int(value)
    high = (1 << (bits - 1)) - 1
    low = -(1 << (bits - 1))
    return max(low, min(high, number))


def _add_flag(
    parser: argparse.ArgumentParser,
    name: str,
    default: Any,
    kind: Any = str,
    help: str | None = None,
) -> None:
    dest = name.replace(".", "_")
    names = (f"-{name}", f"--{name}")
    if kind is bool:
        parser.add_argument(
            *names, dest=dest, default=default, nargs="?", const=True, type=_parse_bool, help=help
        )
    elif kind is int:
        parser.add_argument(*names, dest=dest, default=default, type=_parse_flag_int, help=help)
    else:
        parser.add_argument(*names, dest=dest, default=default, type=kind, help=help)


def _normalise(name: str) -> str:
    return name.replace("_", "").lower()


def _unwrap_optional(hint: Any) -> Any:
    if get_origin(hint) in (Union, types.UnionType):
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _mismatch(value: Any, expected: str, path: str) -> ValueError:
    return ValueError(f"toml: cannot load {type(value).__name__} into {expected} field {path!r}")


def _convert(hint: Any, value: Any, current: Any, duration: bool, path: str) -> Any:
    if duration:
        if not isinstance(value, str):
            raise _mismatch(value, "duration", path)
        return parse_duration(value)
    hint = _unwrap_optional(hint)
    if hint is Any:
        return value
    if isinstance(hint, type) and is_dataclass(hint):
        if not isinstance(value, dict):
            raise _mismatch(value, hint.__name__, path)
        target = current if isinstance(current, hint) else hint()
        _decode(target, value, path)
        return target
    origin = get_origin(hint)
    if origin is list:
        if not isinstance(value, list):
            raise _mismatch(value, "list", path)
        (item,) = get_args(hint)
        return [_convert(item, v, None, False, f"{path}[{i}]") for i, v in enumerate(value)]
    if origin is dict:
        if not isinstance(value, dict):
            raise _mismatch(value, "table", path)
        _, item = get_args(hint)
        merged = dict(current) if isinstance(current, dict) else {}
        for key, v in value.items():
            merged[key] = _convert(item, v, None, False, f"{path}.{key}")
        return merged
    if hint is bool:
        if not isinstance(value, bool):
            raise _mismatch(value, "bool", path)
        return value
    if hint is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _mismatch(value, "int", path)
        return value
    if hint is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _mismatch(value, "float", path)
        return float(value)
    if hint is str:
        if not isinstance(value, str):
            raise _mismatch(value, "string", path)
        return value
    raise TypeError(f"unsupported configuration type {hint!r} for {path!r}")


def _decode(target: Any, table: Mapping[str, Any], where: str = "") -> None:
    """Overlay a TOML table onto a dataclass, matching keys case-insensitively."""
    by_key = {_normalise(f.name): f for f in fields(target)}
    for key, value in table.items():
        spec = by_key.get(key.lower())
        if spec is None:
            continue
        path = f"{where}.{key}" if where else key
        converted = _convert(
            spec.type,
            value,
            getattr(target, spec.name),
            bool(spec.metadata.get("duration")),
            path,
        )
        setattr(target, spec.name, converted)


def _read_toml(path: str | os.PathLike) -> dict[str, Any]:
    with open(path, "rb") as fh:
        return tomllib.load(fh)


@dataclass
class Options:
    """Values given on the command line or through the environment."""

    conf: str = "comet-example.toml"
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    addrs: str = ""
    weight: int = 0
    offline: bool = False
    debug: bool = False


@dataclass
class Env:
    """Where the server runs and how it announces itself."""

    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    weight: int = 0
    offline: bool = False
    addrs: list[str] = field(default_factory=list)


@dataclass
class RPCClient:
    """Client settings for calls to the logic service."""

    dial: float = _duration()
    timeout: float = _duration()


@dataclass
class RPCServer:
    """Settings of the comet RPC server."""

    network: str = ""
    addr: str = ""
    timeout: float = _duration()
    idle_timeout: float = _duration()
    max_life_time: float = _duration()
    force_close_wait: float = _duration()
    keep_alive_interval: float = _duration()
    keep_alive_timeout: float = _duration()


@dataclass
class TCP:
    """TCP listener and buffer settings."""

    bind: list[str] = field(default_factory=list)
    sndbuf: int = 0
    rcvbuf: int = 0
    keep_alive: bool = False
    reader: int = 0
    read_buf: int = 0
    read_buf_size: int = 0
    writer: int = 0
    write_buf: int = 0
    write_buf_size: int = 0


@dataclass
class Websocket:
    """Websocket listener settings."""

    bind: list[str] = field(default_factory=list)
    tls_open: bool = False
    tls_bind: list[str] = field(default_factory=list)
    cert_file: str = ""
    private_file: str = ""


@dataclass
class Protocol:
    """Per-connection protocol settings."""

    timer: int = 0
    timer_size: int = 0
    svr_proto: int = 0
    cli_proto: int = 0
    handshake_timeout: float = _duration()


@dataclass
class BucketConfig:
    """Channel bucket sizing."""

    size: int = 0
    channel: int = 0
    room: int = 0
    routine_amount: int = 0
    routine_size: int = 0


@dataclass
class WhitelistConfig:
    """Members traced to the whitelist log."""

    whitelist: list[int] = field(default_factory=list)
    white_log: str = ""


@dataclass
class Config:
    """The complete comet configuration."""

    debug: bool = False
    env: Env = field(default_factory=Env)
    discovery: dict[str, Any] = field(default_factory=dict)
    tcp: TCP = field(default_factory=TCP)
    websocket: Websocket = field(default_factory=Websocket)
    protocol: Protocol = field(default_factory=Protocol)
    bucket: BucketConfig = field(default_factory=BucketConfig)
    rpc_client: RPCClient = field(default_factory=RPCClient)
    rpc_server: RPCServer = field(default_factory=RPCServer)
    whitelist: WhitelistConfig = field(default_factory=WhitelistConfig)


def parse_options(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> Options:
    """Read command-line flags, falling back to environment variables."""
    env = os.environ if environ is None else environ
    parser = argparse.ArgumentParser(prog="goim-comet", allow_abbrev=False)
    _add_flag(parser, "conf", "comet-example.toml", help="default config path.")
    _add_flag(parser, "region", env.get("REGION", ""), help="available region, or REGION.")
    _add_flag(parser, "zone", env.get("ZONE", ""), help="available zone, or ZONE.")
    _add_flag(parser, "deploy.env", env.get("DEPLOY_ENV", ""), help="deploy env, or DEPLOY_ENV.")
    _add_flag(parser, "host", socket.gethostname(), help="machine hostname.")
    _add_flag(parser, "addrs", env.get("ADDRS", ""), help="server public ip addrs, or ADDRS.")
    _add_flag(parser, "weight", _env_int(env.get("WEIGHT")), int, help="load balancing weight.")
    _add_flag(parser, "offline", _env_bool(env.get("OFFLINE")), bool, help="server offline.")
    _add_flag(parser, "debug", _env_bool(env.get("DEBUG")), bool, help="server debug.")
    ns = parser.parse_args(sys.argv[1:] if argv is None else list(argv))
    return Options(
        conf=ns.conf,
        region=ns.region,
        zone=ns.zone,
        deploy_env=ns.deploy_env,
        host=ns.host,
        addrs=ns.addrs,
        weight=ns.weight,
        offline=ns.offline,
        debug=ns.debug,
    )


def default_config(options: Options | None = None) -> Config:
    """Build the configuration used before the TOML file is applied."""
    o = options if options is not None else Options()
    return Config(
        debug=o.debug,
        env=Env(
            region=o.region,
            zone=o.zone,
            deploy_env=o.deploy_env,
            host=o.host,
            weight=o.weight,
            addrs=o.addrs.split(","),
            offline=o.offline,
        ),
        discovery={"region": o.region, "zone": o.zone, "env": o.deploy_env, "host": o.host},
        rpc_client=RPCClient(dial=1.0, timeout=1.0),
        rpc_server=RPCServer(
            network="tcp",
            addr=":3109",
            timeout=1.0,
            idle_timeout=60.0,
            max_life_time=7200.0,
            force_close_wait=20.0,
            keep_alive_interval=60.0,
            keep_alive_timeout=20.0,
        ),
        tcp=TCP(
            bind=[":3101"],
            sndbuf=4096,
            rcvbuf=4096,
            keep_alive=False,
            reader=32,
            read_buf=1024,
            read_buf_size=8192,
            writer=32,
            write_buf=1024,
            write_buf_size=8192,
        ),
        websocket=Websocket(bind=[":3102"]),
        protocol=Protocol(
            timer=32,
            timer_size=2048,
            cli_proto=5,
            svr_proto=10,
            handshake_timeout=5.0,
        ),
        bucket=BucketConfig(
            size=32,
            channel=1024,
            room=1024,
            routine_amount=32,
            routine_size=1024,
        ),
    )


def load_config(options: Options | None = None) -> Config:
    """Build the defaults and overlay the TOML file named by the options."""
    o = parse_options() if options is None else options
    config = default_config(o)
    _decode(config, _read_toml(o.conf))
    return config