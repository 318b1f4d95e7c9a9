"""Network probes and the per-kind factories the orchestrator memoizes."""

from __future__ import annotations

from typing import Dict

import httpx

from netwatch.config import NetwatchConfig, parse_duration

from .base import Probe, ProbeFactory
from .dns_probe import DnsProbe
from .gateway_probe import GatewayProbe
from .http_probe import HttpProbe
from .ping_probe import PingProbe


def build_probe_factories(
    cfg: NetwatchConfig, *, http_client: httpx.AsyncClient | None = None
) -> Dict[str, ProbeFactory]:
    """Factories for every kind with configured targets.

    HTTP targets need a shared client; the caller owns it and closes it on shutdown.
    """
    ping_timeout = parse_duration(cfg.timeouts.ping, 1.0)
    dns_timeout = parse_duration(cfg.timeouts.dns, 2.0)
    http_timeout = parse_duration(cfg.timeouts.http, 3.0)
    gateway_timeout = parse_duration(cfg.timeouts.gateway, 1.0)
    resolvers = list(cfg.dns.resolvers) or None
    user_agent = cfg.http.user_agent or None

    factories: Dict[str, ProbeFactory] = {}
    if cfg.targets.ping:
        factories["ping"] = lambda key: PingProbe(key, timeout=ping_timeout)
    if cfg.targets.dns:
        factories["dns"] = lambda key: DnsProbe(key, timeout=dns_timeout, resolvers=resolvers)
    if cfg.targets.http:
        if http_client is None:
            raise ValueError("HTTP targets are configured but no http_client was given")
        factories["http"] = lambda key: HttpProbe(key, http_client, timeout=http_timeout, user_agent=user_agent)
    if cfg.targets.gateway:
        factories["gateway"] = lambda key: GatewayProbe(key, timeout=gateway_timeout)
    return factories


__all__ = ["DnsProbe", "GatewayProbe", "HttpProbe", "PingProbe", "Probe", "ProbeFactory", "build_probe_factories"]
