"""Builds a MonitorHost from configuration."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import structlog

from netwatch.bus import FindingBus, SampleBus
from netwatch.config import NetwatchConfig, parse_duration
from netwatch.orchestrator import MonitorOrchestrator
from netwatch.probes import ProbeFactory, build_probe_factories
from netwatch.rules import build_rules
from netwatch.runtime.host import MonitorHost
from netwatch.scheduler.target_pools import TargetPools
from netwatch.sinks import CsvSink, JsonlSink, LogSink, ResultSink, timestamped_path
from netwatch.stats import StatsService
from netwatch.triggers import build_triggers

logger = structlog.get_logger(__name__)

_DEFAULT_INTERVALS = {"ping": 2.0, "dns": 5.0, "http": 10.0, "gateway": 5.0}


def build_pools(cfg: NetwatchConfig, *, now: Optional[float] = None) -> TargetPools:
    sched = cfg.orchestration.scheduler
    pools = TargetPools(
        jitter_pct=sched.jitter_pct,
        backoff_base=sched.backoff_base,
        backoff_max_multiplier=sched.backoff_max_multiplier,
        decay_half_life=parse_duration(sched.decay_half_life, 300.0),
    )
    ts = time.time() if now is None else now
    for kind, default_interval in _DEFAULT_INTERVALS.items():
        interval = parse_duration(getattr(cfg.intervals, kind), default_interval)
        for target in getattr(cfg.targets, kind):
            pools.add(kind, target, weight=cfg.targets.weights.get(target, 1), min_interval=interval, now=ts)
    return pools


def build_sinks(cfg: NetwatchConfig) -> List[ResultSink]:
    sinks: List[ResultSink] = []
    base = Path(cfg.sinks.directory)
    for name, cls in (("csv", CsvSink), ("jsonl", JsonlSink)):
        rel = getattr(cfg.sinks, name)
        if not rel:
            continue
        path = base / rel
        if cfg.sinks.append_timestamp:
            path = timestamped_path(path)
        sinks.append(cls(path))
        logger.info("Sink opened", sink=name, path=str(path))
    if cfg.sinks.log_samples:
        sinks.append(LogSink())
    return sinks


def build_host(
    cfg: NetwatchConfig,
    *,
    probe_factories: Optional[Dict[str, ProbeFactory]] = None,
    sinks: Optional[List[ResultSink]] = None,
) -> MonitorHost:
    """Wire pools, stats, rules, triggers, buses and sinks into a host."""
    orch_cfg = cfg.orchestration
    sample_bus = SampleBus()
    finding_bus = FindingBus()
    stats = StatsService(retention=parse_duration(orch_cfg.stats_retention, 600.0))
    pools = build_pools(cfg)

    http_client: Optional[httpx.AsyncClient] = None
    if probe_factories is None:
        http_client = httpx.AsyncClient(follow_redirects=False)
        probe_factories = build_probe_factories(cfg, http_client=http_client)

    orchestrator = MonitorOrchestrator(
        pools,
        stats,
        probe_factories,
        sample_bus,
        finding_bus,
        rules=build_rules(cfg.rules),
        concurrency=orch_cfg.scheduler.concurrency,
        idle_sleep=parse_duration(orch_cfg.scheduler.idle_sleep, 0.1),
    )
    triggers = build_triggers(cfg.triggers, sample_bus=sample_bus, finding_bus=finding_bus) if cfg.triggers else None

    host = MonitorHost(
        orchestrator,
        sample_bus,
        finding_bus,
        stats,
        triggers=triggers,
        sinks=build_sinks(cfg) if sinks is None else sinks,
        tick_interval=parse_duration(orch_cfg.tick_interval, 1.0),
        summary_interval=parse_duration(orch_cfg.summary_interval, 30.0),
        summary_window=parse_duration(orch_cfg.summary_window, 60.0),
    )
    if http_client is not None:
        host.add_cleanup(http_client.aclose)
    return host
