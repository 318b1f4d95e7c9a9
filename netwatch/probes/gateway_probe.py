from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable

from netwatch.models import Sample, SampleKind
from netwatch.sample_meta import SampleMeta, encode_meta
from netwatch.triggers.actions import parse_default_gateway

from .ping_probe import PingProbe

ROUTE_TABLE = Path("/proc/net/route")
AUTO_TARGETS = frozenset({"auto", "default"})


def read_default_gateway(route_path: Path = ROUTE_TABLE) -> dict[str, str] | None:
    try:
        text = route_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return parse_default_gateway(text)


class GatewayProbe:
    """
    Pings the next hop.

    A target of "auto" (or "default") is resolved from the routing table on every
    execution, so a gateway change is picked up without a restart. Any other target
    is pinged as given.
    """

    def __init__(
        self,
        target: str = "auto",
        timeout: float = 1.0,
        *,
        route_path: Path = ROUTE_TABLE,
        ping_factory: Callable[..., PingProbe] = PingProbe,
    ):
        self.target = target
        self.timeout = float(timeout)
        self.route_path = route_path
        self.id = f"gateway:{target}"
        self._ping_factory = ping_factory

    async def resolve(self) -> dict[str, str] | None:
        if self.target.strip().lower() not in AUTO_TARGETS:
            return {"gateway": self.target.strip()}
        return await asyncio.to_thread(read_default_gateway, self.route_path)

    async def execute(self) -> Sample:
        t0 = time.time()
        route = await self.resolve()
        if route is None:
            extra = encode_meta(SampleMeta(tags={"resolved": False}))
            return Sample(t0, SampleKind.GATEWAY, self.target, False, None, extra)

        ping = await self._ping_factory(route["gateway"], timeout=self.timeout).execute()
        extra = encode_meta(SampleMeta(tags=dict(route, resolved=True)))
        return Sample(t0, SampleKind.GATEWAY, self.target, ping.ok, ping.latency_ms, extra)
