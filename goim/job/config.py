"""Job service configuration: command-line options, defaults and TOML overrides."""

from __future__ import annotations

import argparse
import os
import socket
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from goim.comet.config import _add_flag, _decode, _duration, _read_toml


@dataclass
class Options:
    """Values given on the command line or through the environment."""

    conf: str = "job-example.toml"
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""


@dataclass
class Env:
    """Where the service runs."""

    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""


@dataclass
class RoomConfig:
    """Batching of room messages."""

    batch: int = 0
    signal: float = _duration()
    idle: float = _duration()


@dataclass
class CometConfig:
    """Worker sizing for each comet server connection."""

    routine_chan: int = 0
    routine_size: int = 0


@dataclass
class Kafka:
    """Message queue consumer settings."""

    topic: str = ""
    group: str = ""
    brokers: list[str] = field(default_factory=list)


@dataclass
class Config:
    """The complete job configuration."""

    env: Env = field(default_factory=Env)
    kafka: Kafka = field(default_factory=Kafka)
    discovery: dict[str, Any] = field(default_factory=dict)
    comet: CometConfig = field(default_factory=CometConfig)
    room: RoomConfig = field(default_factory=RoomConfig)


def parse_options(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> Options:
    """Read command-line flags, falling back to environment variables."""
    env = os.environ if environ is None else environ
    parser = argparse.ArgumentParser(prog="goim-job", allow_abbrev=False)
    _add_flag(parser, "conf", "job-example.toml", help="default config path")
    _add_flag(parser, "region", env.get("REGION", ""), help="available region, or REGION.")
    _add_flag(parser, "zone", env.get("ZONE", ""), help="available zone, or ZONE.")
    _add_flag(parser, "deploy.env", env.get("DEPLOY_ENV", ""), help="deploy env, or DEPLOY_ENV.")
    _add_flag(parser, "host", socket.gethostname(), help="machine hostname.")
    ns = parser.parse_args(sys.argv[1:] if argv is None else list(argv))
    return Options(
        conf=ns.conf,
        region=ns.region,
        zone=ns.zone,
        deploy_env=ns.deploy_env,
        host=ns.host,
    )


def default_config(options: Options | None = None) -> Config:
    """Build the configuration used before the TOML file is applied."""
    o = options if options is not None else Options()
    return Config(
        env=Env(region=o.region, zone=o.zone, deploy_env=o.deploy_env, host=o.host),
        discovery={"region": o.region, "zone": o.zone, "env": o.deploy_env, "host": o.host},
        comet=CometConfig(routine_chan=1024, routine_size=32),
        room=RoomConfig(batch=20, signal=1.0, idle=900.0),
    )


def load_config(options: Options | None = None) -> Config:
    """Build the defaults and overlay the TOML file named by the options."""
    o = parse_options() if options is None else options
    config = default_config(o)
    _decode(config, _read_toml(o.conf))
    return config