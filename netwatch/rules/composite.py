from __future__ import annotations

from typing import Iterable, Sequence

from netwatch.models import Finding, Sample
from netwatch.rules.base import Rule


class CompositeRule:
    """Evaluates rules in registration order; the first finding wins."""

    def __init__(self, rules: Iterable[Rule]):
        self.rules: list[Rule] = list(rules)

    def evaluate(self, recent: Sequence[Sample], now: float) -> Finding | None:
        for rule in self.rules:
            finding = rule.evaluate(recent, now)
            if finding is not None:
                return finding
        return None
