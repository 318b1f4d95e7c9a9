"""Finding detectors evaluated over a per-target sample window."""

from __future__ import annotations

from netwatch.config import RulesConfig, parse_duration

from .base import Rule
from .composite import CompositeRule
from .consecutive_fail import ConsecutiveFailRule
from .quorum import QuorumRule


def build_rules(cfg: RulesConfig) -> CompositeRule | None:
    """Default rule chain: consecutive failures first, then the quorum detector."""
    if not cfg.enabled:
        return None
    return CompositeRule(
        [
            ConsecutiveFailRule(threshold=cfg.consecutive_fail_threshold),
            QuorumRule(
                window=parse_duration(cfg.quorum.window, 60.0),
                fail_threshold=cfg.quorum.fail_threshold,
                min_samples=cfg.quorum.min_samples,
            ),
        ]
    )


__all__ = ["CompositeRule", "ConsecutiveFailRule", "QuorumRule", "Rule", "build_rules"]
