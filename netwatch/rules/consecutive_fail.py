from __future__ import annotations

from typing import Sequence

from netwatch.models import Finding, Sample, Severity
from netwatch.sample_meta import parse_meta


class ConsecutiveFailRule:
    def __init__(self, threshold: int = 3, rule_id: str = "consecutive_fail", severity: Severity = Severity.WARNING):
        self.threshold = max(1, int(threshold))
        self.rule_id = rule_id
        self.severity = severity

    def evaluate(self, recent: Sequence[Sample], now: float) -> Finding | None:
        if len(recent) < self.threshold:
            return None

        target = recent[-1].target
        streak = 0
        for sample in reversed(recent):
            if sample.ok or sample.target != target:
                break
            streak += 1

        if streak < self.threshold:
            return None

        meta = parse_meta(recent[-1].extra)
        return Finding(
            timestamp=float(now),
            rule_id=self.rule_id,
            severity=self.severity,
            message=f"{target}: {streak} consecutive failures",
            context={
                "target": target,
                "streak": streak,
                "pool": (meta.pool if meta and meta.pool else ""),
                "key": (meta.key if meta and meta.key else target),
            },
        )
