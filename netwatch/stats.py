from __future__ import annotations

import math
import threading
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import Any

from netwatch.models import Sample, SampleKind

DEFAULT_RETENTION_SECONDS = 600.0

StatsKey = tuple[str, str]


@dataclass(frozen=True)
class WindowStats:
    count: int
    ok_count: int
    fail_pct: float  # fraction 0..1


@dataclass(frozen=True)
class LatencyStats:
    count: int
    ok_count: int
    fail_pct: float
    p50: float | None
    p95: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "ok_count": self.ok_count,
            "fail_pct": self.fail_pct,
            "p50": self.p50,
            "p95": self.p95,
        }


def _kind_name(kind: SampleKind | str) -> str:
    if isinstance(kind, SampleKind):
        return kind.value
    return str(kind or "").strip().lower()


def percentile_nearest_rank(sorted_values: list[float], q: float) -> float | None:
    if not sorted_values:
        return None
    q = float(q)
    if q <= 0:
        return float(sorted_values[0])
    if q >= 1:
        return float(sorted_values[-1])
    n = len(sorted_values)
    rank = math.ceil(q * n)
    idx = max(0, min(rank - 1, n - 1))
    return float(sorted_values[idx])


class StatsService:
    """
    Rolling per-(kind, target) sample history.

    Histories stay time-ordered (out-of-order samples are inserted in place) and
    are pruned on every insert to the retention window behind the newest sample.
    """

    def __init__(self, retention: float = DEFAULT_RETENTION_SECONDS):
        self.retention = float(retention) if float(retention) > 0 else DEFAULT_RETENTION_SECONDS
        self._data: dict[StatsKey, list[Sample]] = {}
        self._lock = threading.Lock()

    def observe(self, sample: Sample) -> None:
        key = (_kind_name(sample.kind), sample.target)
        with self._lock:
            items = self._data.get(key)
            if items is None:
                self._data[key] = [sample]
                return

            if items[-1].timestamp <= sample.timestamp:
                items.append(sample)
            else:
                idx = bisect_right([s.timestamp for s in items], sample.timestamp)
                items.insert(idx, sample)

            cutoff = items[-1].timestamp - self.retention
            if items[0].timestamp < cutoff:
                idx = bisect_left([s.timestamp for s in items], cutoff)
                del items[:idx]

    def keys(self) -> list[StatsKey]:
        with self._lock:
            return sorted(self._data.keys())

    def recent(
        self,
        kind: SampleKind | str,
        target: str,
        window: float | None = None,
        now: float | None = None,
    ) -> list[Sample]:
        with self._lock:
            items = self._data.get((_kind_name(kind), target))
            if not items:
                return []
            if window is None:
                return list(items)
            ref = items[-1].timestamp if now is None else float(now)
            return self._window(items, since_ts=ref - float(window))

    def window_stats(
        self, kind: SampleKind | str, target: str, window: float, now: float
    ) -> WindowStats | None:
        res = self.window_latency(kind, target, window, now)
        if res is None:
            return None
        return WindowStats(count=res.count, ok_count=res.ok_count, fail_pct=res.fail_pct)

    def window_latency(
        self, kind: SampleKind | str, target: str, window: float, now: float
    ) -> LatencyStats | None:
        with self._lock:
            items = self._data.get((_kind_name(kind), target))
            if items is None:
                return None
            w = self._window(items, since_ts=float(now) - float(window))

        total = len(w)
        if total == 0:
            return LatencyStats(count=0, ok_count=0, fail_pct=0.0, p50=None, p95=None)
        ok_count = sum(1 for s in w if s.ok)
        latencies = sorted(float(s.latency_ms) for s in w if s.ok and s.latency_ms is not None)
        return LatencyStats(
            count=total,
            ok_count=ok_count,
            fail_pct=(total - ok_count) / float(total),
            p50=percentile_nearest_rank(latencies, 0.5),
            p95=percentile_nearest_rank(latencies, 0.95),
        )

    def summary(self, window: float, now: float) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for kind, target in self.keys():
            res = self.window_latency(kind, target, window, now)
            if res is None or res.count == 0:
                continue
            rows.append({"kind": kind, "target": target, **res.to_dict()})
        return rows

    @staticmethod
    def _window(items: list[Sample], *, since_ts: float) -> list[Sample]:
        idx = bisect_left([s.timestamp for s in items], since_ts)
        return items[idx:]
