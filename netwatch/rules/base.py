from __future__ import annotations

from typing import Protocol, Sequence

from netwatch.models import Finding, Sample


class Rule(Protocol):
    def evaluate(self, recent: Sequence[Sample], now: float) -> Finding | None: ...
