"""Scheduling loop tying target pools, probes, stats, rules and buses together."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

import structlog

from netwatch.bus import FindingBus, SampleBus
from netwatch.models import Sample, SampleKind
from netwatch.probes.base import Probe, ProbeFactory
from netwatch.rules.base import Rule
from netwatch.sample_meta import tag_sample
from netwatch.scheduler.target_pools import TargetPools
from netwatch.stats import StatsService

DEFAULT_IDLE_SLEEP = 0.1


class MonitorOrchestrator:
    """
    Single scheduling loop over every registered probe kind.

    Each iteration scans kinds starting at a rotating index; the first kind with a
    claimed target runs it and moves the rotation past itself. When nothing is due
    the loop sleeps for the smallest hint, capped at idle_sleep.
    """

    def __init__(
        self,
        pools: TargetPools,
        stats: StatsService,
        probe_factories: Mapping[str, ProbeFactory],
        sample_bus: SampleBus,
        finding_bus: FindingBus,
        rules: Optional[Rule] = None,
        *,
        concurrency: int = 1,
        idle_sleep: float = DEFAULT_IDLE_SLEEP,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.pools = pools
        self.stats = stats
        self.probe_factories: Dict[str, ProbeFactory] = dict(probe_factories)
        self.sample_bus = sample_bus
        self.finding_bus = finding_bus
        self.rules = rules
        self.concurrency = max(1, int(concurrency))
        self.idle_sleep = max(0.001, float(idle_sleep))
        self.logger = logger or structlog.get_logger(__name__)
        self._clock = clock

        self._probes: Dict[Tuple[str, str], Probe] = {}
        self._rotation = 0
        self._slots: Optional[asyncio.Semaphore] = None
        self._inflight: Set[asyncio.Task] = set()
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.executions = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def kinds(self) -> list[str]:
        return list(self.probe_factories.keys())

    def start(self) -> None:
        """Start the scheduling loop on the running event loop."""
        if self.running:
            self.logger.warning("Orchestrator already running")
            return
        self._stop.clear()
        if self.concurrency > 1:
            self._slots = asyncio.Semaphore(self.concurrency)
        self._task = asyncio.get_running_loop().create_task(self._scheduler_loop())
        self.logger.info("Orchestrator started", kinds=self.kinds, concurrency=self.concurrency)

    async def stop(self) -> None:
        """Stop the loop and cancel executions still in progress."""
        self._stop.set()
        tasks = list(self._inflight)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._task is not None:
            self._task = None
            self.logger.info("Orchestrator stopped", executions=self.executions)

    async def run_once(self) -> int:
        """Claim and execute every registered target once, ignoring due times.

        Runs up to `concurrency` probes at a time and returns the number executed.
        """
        now = self._clock()
        claimed = [
            (kind, diag.key)
            for kind in self.kinds
            for diag in self.pools.get_diagnostics(kind)
            if self.pools.claim(kind, diag.key, now)
        ]
        slots = asyncio.Semaphore(self.concurrency)

        async def run(kind: str, key: str) -> None:
            async with slots:
                await self._execute(kind, key, now)

        before = self.executions
        await asyncio.gather(*(run(kind, key) for kind, key in claimed))
        self.logger.info("Single pass finished", targets=len(claimed), executions=self.executions - before)
        return self.executions - before

    async def _scheduler_loop(self) -> None:
        while not self._stop.is_set():
            sleep_for = await self.step()
            if sleep_for <= 0:
                # Yield so other loops (bus drains, trigger ticks) get a turn.
                await asyncio.sleep(0)
                continue
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass

    async def step(self) -> float:
        """
        Run one scheduling decision.

        Returns 0 when a target was claimed and executed (or dispatched), otherwise
        the number of seconds to sleep before asking again.
        """
        kinds = self.kinds
        if not kinds:
            return self.idle_sleep

        if self._slots is not None:
            await self._slots.acquire()

        now = self._clock()
        hint: Optional[float] = None
        for offset in range(len(kinds)):
            idx = (self._rotation + offset) % len(kinds)
            kind = kinds[idx]
            nxt = self.pools.try_get_next(kind, now)
            if nxt is None:
                continue
            if nxt.delay <= 0:
                self._rotation = (idx + 1) % len(kinds)
                if self._slots is None:
                    await self._execute(kind, nxt.key, now)
                else:
                    task = asyncio.get_running_loop().create_task(self._execute_in_slot(kind, nxt.key, now))
                    self._inflight.add(task)
                    task.add_done_callback(self._inflight.discard)
                return 0.0
            hint = nxt.delay if hint is None else min(hint, nxt.delay)

        if self._slots is not None:
            self._slots.release()
        if hint is None:
            return self.idle_sleep
        return min(hint, self.idle_sleep)

    async def _execute_in_slot(self, kind: str, key: str, now: float) -> None:
        try:
            await self._execute(kind, key, now)
        finally:
            if self._slots is not None:
                self._slots.release()

    def _get_probe(self, kind: str, key: str) -> Probe:
        probe = self._probes.get((kind, key))
        if probe is None:
            probe = self.probe_factories[kind](key)
            self._probes[(kind, key)] = probe
        return probe

    async def _execute(self, kind: str, key: str, now: float) -> None:
        try:
            sample = await self._get_probe(kind, key).execute()
        except asyncio.CancelledError:
            # Release the claim so the target is schedulable after a restart.
            self.pools.report(kind, key, False, now=self._clock())
            raise
        except Exception as e:
            self.logger.debug("Probe raised", kind=kind, key=key, error=f"{type(e).__name__}: {e}")
            sample = Sample(now, SampleKind.coerce(kind), key, False)

        tagged = tag_sample(sample, pool=kind, key=key)
        self.stats.observe(tagged)
        await self.sample_bus.publish(tagged)
        self.pools.report(kind, key, sample.ok, now=self._clock())
        self.executions += 1

        if self.rules is None:
            return
        recent = self.stats.recent(tagged.kind, tagged.target)
        try:
            finding = self.rules.evaluate(recent, self._clock())
        except Exception as e:
            self.logger.error("Rule evaluation failed", kind=kind, key=key, error=str(e))
            return
        if finding is not None:
            await self.finding_bus.publish(finding)
