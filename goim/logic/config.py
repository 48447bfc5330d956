"""Logic service configuration: command-line options, defaults and TOML overrides."""

from __future__ import annotations

import argparse
import os
import socket
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from goim.comet.config import _add_flag, _decode, _duration, _env_int, _read_toml


@dataclass
class Options:
    """Values given on the command line or through the environment."""

    conf: str = "logic-example.toml"
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    weight: int = 0


@dataclass
class Env:
    """Where the service runs and how it announces itself."""

    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    weight: int = 0


@dataclass
class Node:
    """What clients are told about comet nodes."""

    default_domain: str = ""
    host_domain: str = ""
    tcp_port: int = 0
    ws_port: int = 0
    wss_port: int = 0
    heartbeat_max: int = 0
    heartbeat: float = _duration()
    region_weight: float = 0.0


@dataclass
class Backoff:
    """Reconnect backoff advertised to clients."""

    max_delay: int = 0
    base_delay: int = 0
    factor: float = 0.0
    jitter: float = 0.0


@dataclass
class Redis:
    """Redis connection settings."""

    network: str = ""
    addr: str = ""
    auth: str = ""
    active: int = 0
    idle: int = 0
    dial_timeout: float = _duration()
    read_timeout: float = _duration()
    write_timeout: float = _duration()
    idle_timeout: float = _duration()
    expire: float = _duration()


@dataclass
class Kafka:
    """Message queue producer settings."""

    topic: str = ""
    brokers: list[str] = field(default_factory=list)


@dataclass
class RPCClient:
    """RPC client settings."""

    dial: float = _duration()
    timeout: float = _duration()


@dataclass
class RPCServer:
    """Settings of the logic RPC server."""

    network: str = ""
    addr: str = ""
    timeout: float = _duration()
    idle_timeout: float = _duration()
    max_life_time: float = _duration()
    force_close_wait: float = _duration()
    keep_alive_interval: float = _duration()
    keep_alive_timeout: float = _duration()


@dataclass
class HTTPServer:
    """Settings of the HTTP push and query server."""

    network: str = ""
    addr: str = ""
    read_timeout: float = _duration()
    write_timeout: float = _duration()


@dataclass
class Config:
    """The complete logic configuration."""

    env: Env = field(default_factory=Env)
    discovery: dict[str, Any] = field(default_factory=dict)
    rpc_client: RPCClient = field(default_factory=RPCClient)
    rpc_server: RPCServer = field(default_factory=RPCServer)
    http_server: HTTPServer = field(default_factory=HTTPServer)
    kafka: Kafka = field(default_factory=Kafka)
    redis: Redis = field(default_factory=Redis)
    node: Node = field(default_factory=Node)
    backoff: Backoff = field(default_factory=Backoff)
    regions: dict[str, list[str]] = field(default_factory=dict)


def parse_options(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> Options:
    """Read command-line flags, falling back to environment variables."""
    env = os.environ if environ is None else environ
    parser = argparse.ArgumentParser(prog="goim-logic", allow_abbrev=False)
    _add_flag(parser, "conf", "logic-example.toml", help="default config path")
    _add_flag(parser, "region", env.get("REGION", ""), help="available region, or REGION.")
    _add_flag(parser, "zone", env.get("ZONE", ""), help="available zone, or ZONE.")
    _add_flag(parser, "deploy.env", env.get("DEPLOY_ENV", ""), help="deploy env, or DEPLOY_ENV.")
    _add_flag(parser, "host", socket.gethostname(), help="machine hostname.")
    _add_flag(parser, "weight", _env_int(env.get("WEIGHT")), int, help="load balancing weight.")
    ns = parser.parse_args(sys.argv[1:] if argv is None else list(argv))
    return Options(
        conf=ns.conf,
        region=ns.region,
        zone=ns.zone,
        deploy_env=ns.deploy_env,
        host=ns.host,
        weight=ns.weight,
    )


def default_config(options: Options | None = None) -> Config:
    """Build the configuration used before the TOML file is applied."""
    o = options if options is not None else Options()
    return Config(
        env=Env(
            region=o.region,
            zone=o.zone,
            deploy_env=o.deploy_env,
            host=o.host,
            weight=o.weight,
        ),
        discovery={"region": o.region, "zone": o.zone, "env": o.deploy_env, "host": o.host},
        http_server=HTTPServer(
            network="tcp",
            addr="3111",
            read_timeout=1.0,
            write_timeout=1.0,
        ),
        rpc_client=RPCClient(dial=1.0, timeout=1.0),
        rpc_server=RPCServer(
            network="tcp",
            addr="3119",
            timeout=1.0,
            idle_timeout=60.0,
            max_life_time=7200.0,
            force_close_wait=20.0,
            keep_alive_interval=60.0,
            keep_alive_timeout=20.0,
        ),
        backoff=Backoff(max_delay=300, base_delay=3, factor=1.8, jitter=1.3),
    )


def load_config(options: Options | None = None) -> Config:
    """Build the defaults and overlay the TOML file named by the options."""
    o = parse_options() if options is None else options
    config = default_config(o)
    _decode(config, _read_toml(o.conf))
    return config