"""Runs the orchestrator, drain loops and periodic jobs as one monitor."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from netwatch.bus import FindingBus, SampleBus
from netwatch.models import Finding, Sample
from netwatch.orchestrator import MonitorOrchestrator
from netwatch.runtime.jobs import PeriodicJobs
from netwatch.sinks import ResultSink
from netwatch.stats import StatsService
from netwatch.triggers.engine import TriggerEngine


class MonitorHost:
    """
    Owns every loop of a running monitor.

    Shutdown order: producers first (orchestrator, periodic jobs, trigger actions),
    then the buses are completed so the drain loops flush what is buffered.
    """

    def __init__(
        self,
        orchestrator: MonitorOrchestrator,
        sample_bus: SampleBus,
        finding_bus: FindingBus,
        stats: StatsService,
        triggers: Optional[TriggerEngine] = None,
        sinks: Sequence[ResultSink] = (),
        *,
        tick_interval: float = 1.0,
        summary_interval: float = 30.0,
        summary_window: float = 60.0,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.orchestrator = orchestrator
        self.sample_bus = sample_bus
        self.finding_bus = finding_bus
        self.stats = stats
        self.triggers = triggers
        self.sinks: List[ResultSink] = list(sinks)
        self.tick_interval = float(tick_interval)
        self.summary_interval = float(summary_interval)
        self.summary_window = float(summary_window)
        self.logger = logger or structlog.get_logger(__name__)
        self._clock = clock

        self.jobs = PeriodicJobs()
        self._drains: List[asyncio.Task] = []
        self._cleanups: List[Callable[[], Awaitable[Any]]] = []
        self._stopped = asyncio.Event()
        self._started = False
        self._stopping = False
        self.samples_drained = 0
        self.findings_drained = 0

    def add_cleanup(self, func: Callable[[], Awaitable[Any]]) -> None:
        """Register an async callable awaited once the monitor has stopped."""
        self._cleanups.append(func)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._start_drains()
        if self.triggers is not None and self.triggers.trigger_ids:
            self.jobs.add_interval_job("trigger_tick", self._tick, self.tick_interval, "Trigger engine tick")
        if self.summary_interval > 0:
            self.jobs.add_interval_job("stats_summary", self._log_summary, self.summary_interval, "Stats summary")
        self.jobs.start()
        self.orchestrator.start()
        self.logger.info("Monitor started", kinds=self.orchestrator.kinds, sinks=len(self.sinks))

    async def run_once(self) -> int:
        """Probe every target once, flush sinks and stop. No periodic jobs run."""
        if self._started:
            raise RuntimeError("run_once() needs a host that has not been started")
        self._started = True
        self._start_drains()
        try:
            return await self.orchestrator.run_once()
        finally:
            await self.stop()

    async def run(self, duration: Optional[float] = None) -> None:
        """Run until stop() is called or the duration elapses."""
        await self.start()
        if duration is None:
            await self._stopped.wait()
            return
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=max(0.0, float(duration)))
        except asyncio.TimeoutError:
            pass
        await self.stop()

    async def stop(self) -> None:
        if self._stopping:
            await self._stopped.wait()
            return
        self._stopping = True

        await self.orchestrator.stop()
        self.jobs.stop()
        if self.triggers is not None:
            await self.triggers.shutdown()

        self.sample_bus.complete()
        self.finding_bus.complete()
        if self._drains:
            await asyncio.gather(*self._drains, return_exceptions=True)

        for sink in self.sinks:
            try:
                sink.close()
            except Exception as e:
                self.logger.error("Sink close failed", sink=type(sink).__name__, error=str(e))
        for cleanup in self._cleanups:
            try:
                await cleanup()
            except Exception as e:
                self.logger.error("Cleanup failed", error=str(e))

        self.logger.info(
            "Monitor stopped",
            samples=self.samples_drained,
            findings=self.findings_drained,
            samples_dropped=self.sample_bus.dropped,
            findings_dropped=self.finding_bus.dropped,
        )
        self._stopped.set()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._started and not self._stopped.is_set(),
            "kinds": self.orchestrator.kinds,
            "executions": self.orchestrator.executions,
            "samples_drained": self.samples_drained,
            "findings_drained": self.findings_drained,
            "buses": {
                bus.name: {"buffered": len(bus), "capacity": bus.capacity, "dropped": bus.dropped}
                for bus in (self.sample_bus, self.finding_bus)
            },
            "triggers": {
                tid: self.triggers.state(tid).value for tid in self.triggers.trigger_ids
            } if self.triggers is not None else {},
            "jobs": self.jobs.list_jobs(),
        }

    def _start_drains(self) -> None:
        loop = asyncio.get_running_loop()
        self._drains = [
            loop.create_task(self._sample_drain()),
            loop.create_task(self._finding_drain()),
        ]

    async def _sample_drain(self) -> None:
        # No cancellation here: the loop ends when the bus is completed and drained.
        async for sample in self.sample_bus.read_all():
            self.samples_drained += 1
            self._dispatch_sample(sample)

    async def _finding_drain(self) -> None:
        async for finding in self.finding_bus.read_all():
            self.findings_drained += 1
            self._dispatch_finding(finding)

    def _dispatch_sample(self, sample: Sample) -> None:
        for sink in self.sinks:
            try:
                sink.write_sample(sample)
            except Exception as e:
                self.logger.error("Sink write failed", sink=type(sink).__name__, error=str(e))
        if self.triggers is not None:
            self.triggers.observe(sample)

    def _dispatch_finding(self, finding: Finding) -> None:
        for sink in self.sinks:
            try:
                sink.write_finding(finding)
            except Exception as e:
                self.logger.error("Sink write failed", sink=type(sink).__name__, error=str(e))

    async def _tick(self) -> None:
        if self.triggers is not None and not self._stopping:
            self.triggers.on_tick(self._clock())

    async def _log_summary(self) -> None:
        for row in self.stats.summary(self.summary_window, self._clock()):
            self.logger.info(
                "Window summary",
                kind=row["kind"],
                target=row["target"],
                count=row["count"],
                loss_pct=round(row["fail_pct"] * 100.0, 1),
                p50_ms=row["p50"],
                p95_ms=row["p95"],
            )
