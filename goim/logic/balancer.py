"""Weighted choice of comet nodes for connecting clients."""

from __future__ import annotations

import logging
import math
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from goim.model import META_ADDRS, META_CONN_COUNT, META_WEIGHT

logger = logging.getLogger(__name__)

_MIN_WEIGHT = 1
_MAX_WEIGHT = 1 << 20
_MAX_NODES = 5

_DECIMAL = re.compile(r"[+-]?[0-9]+")
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1


def _parse_int32(text: str | None) -> int:
    """Parse a signed decimal that must fit in 32 bits."""
    if text is None or not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    value = int(text)
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"value out of range: {text!r}")
    return value


@dataclass
class Instance:
    """A server instance as registered with service discovery."""

    region: str = ""
    zone: str = ""
    env: str = ""
    hostname: str = ""
    appid: str = ""
    addrs: list[str] = field(default_factory=list)
    metadata: dict[str, str] | None = field(default_factory=dict)
    last_ts: int = 0


@dataclass
class WeightedNode:
    """A comet node with its fixed weight and its weight for the next choice."""

    region: str = ""
    hostname: str = ""
    addrs: list[str] = field(default_factory=list)
    fixed_weight: int = 0
    current_weight: int = 0
    current_conns: int = 0
    updated: int = 0

    def __str__(self) -> str:
        return (
            f"region:{self.region} fixedWeight:{self.fixed_weight}, "
            f"currentWeight:{self.current_weight}, currentConns:{self.current_conns}"
        )

    def chosen(self) -> None:
        """Count one more connection on the node."""
        self.current_conns += 1

    def reset(self) -> None:
        """Clear the computed weight."""
        self.current_weight = 0

    def calculate_weight(self, total_weight: int, total_conns: int, gain_weight: float) -> None:
        """Weigh the node by how far its share of connections lags its share of weight."""
        fixed = self.fixed_weight * gain_weight
        total_weight += int(fixed) - self.fixed_weight
        if total_conns <= 0:
            self.reset()
            return
        weight_ratio = fixed / total_weight if total_weight else 0.0
        conn_ratio = self.current_conns / total_conns * 0.5
        diff = weight_ratio - conn_ratio
        multiple = diff * total_conns
        floor = math.floor(multiple)
        if floor - multiple >= -0.5:
            self.current_weight = int(fixed + floor)
        else:
            self.current_weight = int(fixed + math.ceil(multiple))
        if diff < 0:
            self.current_weight = max(self.current_weight, _MIN_WEIGHT)
        else:
            self.current_weight = min(self.current_weight, _MAX_WEIGHT)


class LoadBalancer:
    """Chooses comet nodes so that connections follow the nodes' weights."""

    def __init__(self) -> None:
        self._nodes: dict[str, WeightedNode] = {}
        self._total_conns = 0
        self._total_weight = 0
        self._lock = threading.Lock()

    def size(self) -> int:
        """Number of known nodes."""
        return len(self._nodes)

    def _weighted_nodes(self, region: str, region_weight: float) -> list[WeightedNode]:
        for node in self._nodes.values():
            gain = region_weight if node.region == region else 1.0
            node.calculate_weight(self._total_weight, self._total_conns, gain)
        nodes = sorted(self._nodes.values(), key=lambda n: n.current_weight, reverse=True)
        if nodes:
            nodes[0].chosen()
            self._total_conns += 1
        return nodes

    def node_addrs(
        self, region: str, domain: str, region_weight: float
    ) -> tuple[list[str], list[str]]:
        """Domains and addresses of the best nodes, best first; counts a choice of the first."""
        with self._lock:
            nodes = self._weighted_nodes(region, region_weight)
        domains: list[str] = []
        addrs: list[str] = []
        for node in nodes[:_MAX_NODES]:
            domains.append(node.hostname + domain)
            addrs.extend(node.addrs)
        return domains, addrs

    def update(self, instances: Iterable[Instance]) -> None:
        """Replace the nodes, unless fewer than half as many instances are offered."""
        instances = list(instances)
        if not instances or (self._nodes and len(instances) / len(self._nodes) < 0.5):
            logger.error(
                "load balancer update src:%d target:%d less than half",
                len(self._nodes),
                len(instances),
            )
            return
        nodes: dict[str, WeightedNode] = {}
        total_conns = 0
        total_weight = 0
        with self._lock:
            for ins in instances:
                old = self._nodes.get(ins.hostname)
                if old is not None and old.updated == ins.last_ts:
                    nodes[ins.hostname] = old
                    total_conns += old.current_conns
                    total_weight += old.fixed_weight
                    continue
                meta = ins.metadata or {}
                try:
                    weight = _parse_int32(meta.get(META_WEIGHT, ""))
                except ValueError as exc:
                    logger.error("instance(%s) weight:%r error(%s)", ins, meta.get(META_WEIGHT), exc)
                    continue
                try:
                    conns = _parse_int32(meta.get(META_CONN_COUNT, ""))
                except ValueError as exc:
                    logger.error(
                        "instance(%s) conns:%r error(%s)", ins, meta.get(META_CONN_COUNT), exc
                    )
                    continue
                nodes[ins.hostname] = WeightedNode(
                    region=ins.region,
                    hostname=ins.hostname,
                    fixed_weight=weight,
                    current_conns=conns,
                    addrs=meta.get(META_ADDRS, "").split(","),
                    updated=ins.last_ts,
                )
                total_conns += conns
                total_weight += weight
            self._nodes = nodes
            self._total_conns = total_conns
            self._total_weight = total_weight