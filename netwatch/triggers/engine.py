"""Debounced, cooled-down trigger engine reacting to sustained sample conditions."""

from __future__ import annotations

import asyncio
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from netwatch.bus import FindingBus, SampleBus
from netwatch.models import Finding, Sample, Severity
from netwatch.sample_meta import meta_source, parse_meta

DEFAULT_ACTION_TIMEOUT = 10.0

TriggerAction = Callable[[], Awaitable[List[Sample]]]
TriggerPredicate = Callable[[Sample], bool]


class TriggerState(str, Enum):
    DISARMED = "disarmed"
    ARMED = "armed"
    RUNNING = "running"


@dataclass(frozen=True)
class TriggerSpec:
    id: str
    debounce: float
    cooldown: float
    predicate: TriggerPredicate
    action: TriggerAction


@dataclass(frozen=True)
class ArmedCause:
    armed_at: float
    source: str
    detail: str


@dataclass
class _TriggerRuntime:
    last_fire: float = -math.inf
    running: bool = False
    fires: int = 0


def describe_cause(sample: Sample) -> str:
    parts = [
        f"kind={sample.kind.value}",
        f"target={sample.target}",
        f"ok={'yes' if sample.ok else 'no'}",
    ]
    if sample.latency_ms is not None:
        parts.append(f"ms={sample.latency_ms:g}")
    meta = parse_meta(sample.extra)
    if meta is not None and (meta.pool or meta.key):
        parts.append(f"meta={meta.pool or ''}:{meta.key or ''}")
    return " ".join(parts)


class TriggerEngine:
    """
    Runs trigger actions once their condition has persisted long enough.

    observe() arms triggers from the sample stream; on_tick() is driven by an
    external clock and launches actions whose debounce and cooldown have elapsed.
    A trigger's action never overlaps with itself.
    """

    def __init__(
        self,
        sample_bus: Optional[SampleBus] = None,
        finding_bus: Optional[FindingBus] = None,
        *,
        action_timeout: float = DEFAULT_ACTION_TIMEOUT,
        logger: Any = None,
    ):
        self.sample_bus = sample_bus
        self.finding_bus = finding_bus
        self.action_timeout = float(action_timeout)
        self.logger = logger or structlog.get_logger(__name__)

        self._triggers: List[TriggerSpec] = []
        self._state: Dict[str, _TriggerRuntime] = {}
        self._armed: Dict[str, ArmedCause] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._lock = threading.Lock()

    def add_trigger(self, spec: TriggerSpec) -> "TriggerEngine":
        """Register a trigger; ids are unique."""
        with self._lock:
            if spec.id in self._state:
                raise ValueError(f"Trigger already registered: {spec.id}")
            self._triggers.append(spec)
            self._state[spec.id] = _TriggerRuntime()
        return self

    @property
    def trigger_ids(self) -> List[str]:
        return [t.id for t in self._triggers]

    def state(self, trigger_id: str) -> TriggerState:
        """Current lifecycle state of a trigger."""
        with self._lock:
            rt = self._state.get(trigger_id)
            if rt is not None and rt.running:
                return TriggerState.RUNNING
            if trigger_id in self._armed:
                return TriggerState.ARMED
            return TriggerState.DISARMED

    def armed_cause(self, trigger_id: str) -> Optional[ArmedCause]:
        with self._lock:
            return self._armed.get(trigger_id)

    def fire_count(self, trigger_id: str) -> int:
        with self._lock:
            rt = self._state.get(trigger_id)
            return rt.fires if rt is not None else 0

    def observe(self, sample: Sample) -> None:
        """Arm every trigger whose predicate matches; armed triggers keep their original cause."""
        for spec in self._triggers:
            try:
                matched = bool(spec.predicate(sample))
            except Exception as e:
                self.logger.warning("Trigger predicate failed", trigger_id=spec.id, error=str(e))
                continue
            if not matched:
                continue

            with self._lock:
                if spec.id in self._armed:
                    continue
                cause = ArmedCause(
                    armed_at=sample.timestamp,
                    source=meta_source(sample),
                    detail=describe_cause(sample),
                )
                self._armed[spec.id] = cause

            self.logger.info(
                "Trigger armed",
                trigger_id=spec.id,
                source=cause.source,
                cause=cause.detail,
            )

    def on_tick(self, now: float) -> None:
        """Fire armed triggers whose debounce and cooldown windows have passed."""
        loop = asyncio.get_running_loop()
        for spec in self._triggers:
            with self._lock:
                cause = self._armed.get(spec.id)
                if cause is None:
                    continue
                if now - cause.armed_at < spec.debounce:
                    continue
                rt = self._state[spec.id]
                if now - rt.last_fire < spec.cooldown:
                    continue
                if rt.running:
                    continue
                rt.running = True
                rt.fires += 1

            self.logger.info(
                "Trigger firing",
                trigger_id=spec.id,
                armed_for_seconds=round(now - cause.armed_at, 3),
                cooldown_seconds=spec.cooldown,
                source=cause.source,
                cause=cause.detail,
            )
            coro = self._run_action(spec, now)
            try:
                task = loop.create_task(coro)
            except Exception as e:
                coro.close()
                with self._lock:
                    rt.running = False
                    rt.fires -= 1
                self.logger.error("Trigger launch failed", trigger_id=spec.id, error=str(e))
                continue
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_action(self, spec: TriggerSpec, now: float) -> None:
        try:
            self.logger.info("Trigger action start", trigger_id=spec.id)
            samples = list(await asyncio.wait_for(spec.action(), timeout=self.action_timeout) or [])
            if self.sample_bus is not None:
                for sample in samples:
                    self.sample_bus.try_publish(sample)
            self._publish_finding(
                Finding(
                    timestamp=now,
                    rule_id=f"trigger:{spec.id}",
                    severity=Severity.INFO,
                    message=f"Trigger {spec.id} executed",
                    context={"trigger": spec.id, "results": len(samples)},
                )
            )
            self.logger.info("Trigger action done", trigger_id=spec.id, results=len(samples))
        except asyncio.CancelledError:
            self.logger.info("Trigger action cancelled", trigger_id=spec.id)
            raise
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            self._publish_finding(
                Finding(
                    timestamp=now,
                    rule_id=f"trigger:{spec.id}",
                    severity=Severity.WARNING,
                    message=f"Trigger {spec.id} failed",
                    context={"trigger": spec.id, "error": error},
                )
            )
            self.logger.warning("Trigger action failed", trigger_id=spec.id, error=error)
        finally:
            with self._lock:
                rt = self._state[spec.id]
                rt.last_fire = now
                rt.running = False
                self._armed.pop(spec.id, None)

    def _publish_finding(self, finding: Finding) -> None:
        if self.finding_bus is not None:
            self.finding_bus.try_publish(finding)

    async def shutdown(self) -> None:
        """Cancel running actions and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
