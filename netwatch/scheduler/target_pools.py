"""Weighted target pools with due times, backoff, failure decay and in-flight exclusivity."""

from __future__ import annotations

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, NamedTuple

MAX_FAILURE_COUNT = 32
MAX_BACKOFF_EXPONENT = 16
MIN_NEXT_DELAY = 0.1  # seconds
DEFAULT_MIN_INTERVAL = 1.0
DEFAULT_DECAY_HALF_LIFE = 300.0


class NextTarget(NamedTuple):
    key: str
    delay: float


@dataclass(frozen=True)
class TargetPoolDiagnostic:
    key: str
    weight: int
    next_due: float
    failure_count: int
    in_flight: bool
    min_interval: float
    last_updated: float

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "weight": self.weight,
            "next_due": self.next_due,
            "failure_count": self.failure_count,
            "in_flight": self.in_flight,
            "min_interval": self.min_interval,
            "last_updated": self.last_updated,
        }


@dataclass
class PoolEntry:
    key: str
    weight: int
    min_interval: float
    next_due: float
    last_updated: float
    decay_anchor: float
    failure_count: int = 0
    anchor_count: int = 0
    in_flight: bool = False


class TargetPools:
    """
    Per-kind registry of targets and their scheduling state.

    try_get_next() either claims a due target (delay == 0, the caller must run it
    and report back) or returns a positive delay hint without claiming anything.
    """

    def __init__(
        self,
        jitter_pct: float = 0.2,
        backoff_base: float = 2.0,
        backoff_max_multiplier: float = 8,
        decay_half_life: float | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.jitter_pct = min(1.0, max(0.0, float(jitter_pct)))
        self.backoff_base = max(1.0, float(backoff_base))
        self.backoff_max_multiplier = max(1.0, float(backoff_max_multiplier))
        if decay_half_life is None or float(decay_half_life) <= 0:
            decay_half_life = DEFAULT_DECAY_HALF_LIFE
        self.decay_half_life = float(decay_half_life)
        self._rng = rng or random.Random()
        self._clock = clock
        self._pools: dict[str, list[PoolEntry]] = {}
        self._lock = threading.Lock()

    def add(
        self,
        kind: str,
        key: str,
        weight: int = 1,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        now: float | None = None,
    ) -> "TargetPools":
        ts = self._clock() if now is None else float(now)
        interval = float(min_interval)
        entry = PoolEntry(
            key=key,
            weight=max(1, int(weight)),
            min_interval=interval if interval > 0 else DEFAULT_MIN_INTERVAL,
            next_due=ts,
            last_updated=ts,
            decay_anchor=ts,
        )
        with self._lock:
            self._pools.setdefault(kind, []).append(entry)
        return self

    def kinds(self) -> list[str]:
        with self._lock:
            return list(self._pools.keys())

    def try_get_next(self, kind: str, now: float | None = None) -> NextTarget | None:
        ts = self._clock() if now is None else float(now)
        with self._lock:
            entries = self._pools.get(kind)
            if not entries:
                return None

            for entry in entries:
                self._decay(entry, ts)

            eligible = [e for e in entries if e.next_due <= ts and not e.in_flight]
            if not eligible:
                earliest = min(entries, key=lambda e: e.next_due)
                delay = earliest.next_due - ts
                # Overdue but still in flight: never hand out a zero delay without a claim.
                if delay <= 0:
                    delay = MIN_NEXT_DELAY
                return NextTarget(earliest.key, delay)

            chosen = self._pick_weighted(eligible)
            chosen.next_due = ts + self._next_delay(chosen)
            chosen.in_flight = True
            chosen.last_updated = ts
            return NextTarget(chosen.key, 0.0)

    def claim(self, kind: str, key: str, now: float | None = None) -> bool:
        """Claim a specific target whether or not it is due. False when unknown or in flight."""
        ts = self._clock() if now is None else float(now)
        with self._lock:
            entry = self._find(kind, key)
            if entry is None or entry.in_flight:
                return False
            self._decay(entry, ts)
            entry.next_due = ts + self._next_delay(entry)
            entry.in_flight = True
            entry.last_updated = ts
            return True

    def report(self, kind: str, key: str, ok: bool, now: float | None = None) -> None:
        ts = self._clock() if now is None else float(now)
        with self._lock:
            entry = self._find(kind, key)
            if entry is None:
                return
            if ok:
                entry.failure_count = 0
            else:
                entry.failure_count = min(entry.failure_count + 1, MAX_FAILURE_COUNT)
            entry.in_flight = False
            entry.last_updated = ts
            entry.decay_anchor = ts
            entry.anchor_count = entry.failure_count

    def get_diagnostics(self, kind: str) -> list[TargetPoolDiagnostic]:
        with self._lock:
            entries = list(self._pools.get(kind) or [])
            return [
                TargetPoolDiagnostic(
                    key=e.key,
                    weight=e.weight,
                    next_due=e.next_due,
                    failure_count=e.failure_count,
                    in_flight=e.in_flight,
                    min_interval=e.min_interval,
                    last_updated=e.last_updated,
                )
                for e in entries
            ]

    def _find(self, kind: str, key: str) -> PoolEntry | None:
        for entry in self._pools.get(kind) or []:
            if entry.key == key:
                return entry
        return None

    def _decay(self, entry: PoolEntry, now: float) -> None:
        # Only idle entries decay. The count is recomputed from the value and time
        # recorded at the last report, so repeated polling never compounds.
        if entry.failure_count <= 0 or entry.in_flight:
            return
        elapsed = now - entry.decay_anchor
        if elapsed <= 0:
            return
        decayed = int(math.floor(entry.anchor_count * (0.5 ** (elapsed / self.decay_half_life))))
        if decayed < entry.failure_count:
            entry.failure_count = decayed

    def _pick_weighted(self, eligible: list[PoolEntry]) -> PoolEntry:
        total = sum(e.weight for e in eligible)
        pick = self._rng.random() * total
        acc = 0
        for entry in eligible:
            acc += entry.weight
            if pick < acc:
                return entry
        return eligible[-1]

    def _next_delay(self, entry: PoolEntry) -> float:
        base_ms = entry.min_interval * 1000.0
        jitter_ms = base_ms * self.jitter_pct
        offset_ms = 0.0 if jitter_ms <= 1 else self._rng.uniform(-jitter_ms, jitter_ms)
        exponent = min(max(entry.failure_count, 0), MAX_BACKOFF_EXPONENT)
        multiplier = min(self.backoff_max_multiplier, self.backoff_base ** exponent)
        next_ms = base_ms * multiplier + offset_ms
        return max(MIN_NEXT_DELAY, next_ms / 1000.0)
