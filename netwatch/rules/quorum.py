from __future__ import annotations

from typing import Sequence

from netwatch.models import Finding, Sample, Severity
from netwatch.sample_meta import parse_meta

DEFAULT_WINDOW_SECONDS = 60.0


class QuorumRule:
    """Failure-rate detector over a time window, gated by a minimum sample count."""

    def __init__(
        self,
        window: float,
        fail_threshold: float,
        min_samples: int,
        rule_id: str = "quorum_fail",
        severity: Severity = Severity.WARNING,
    ):
        self.window = float(window) if float(window) > 0 else DEFAULT_WINDOW_SECONDS
        self.fail_threshold = min(1.0, max(0.0, float(fail_threshold)))
        self.min_samples = max(1, int(min_samples))
        self.rule_id = rule_id
        self.severity = severity

    def evaluate(self, recent: Sequence[Sample], now: float) -> Finding | None:
        if not recent:
            return None

        cutoff = float(now) - self.window
        last = recent[-1]
        target = last.target
        meta = parse_meta(last.extra)
        pool = meta.pool if meta and meta.pool else ""

        total = 0
        fails = 0
        # Expects a per-target slice; stops at the first sample of another target.
        for sample in reversed(recent):
            if sample.timestamp < cutoff or sample.target != target:
                break
            total += 1
            if not sample.ok:
                fails += 1

        if total < self.min_samples:
            return None
        fail_pct = fails / float(total)
        if fail_pct < self.fail_threshold:
            return None

        return Finding(
            timestamp=float(now),
            rule_id=self.rule_id,
            severity=self.severity,
            message=f"{target}: failure rate {fail_pct * 100:.1f}% over {self.window:.0f}s ({fails}/{total})",
            context={
                "target": target,
                "pool": pool,
                "count": total,
                "fails": fails,
                "fail_pct": fail_pct,
                "window_sec": self.window,
            },
        )
