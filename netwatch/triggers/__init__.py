"""Trigger engine and built-in reactions to sustained failures."""

from __future__ import annotations

from typing import Any, Iterable

from netwatch.bus import FindingBus, SampleBus
from netwatch.config import TriggerConfig, parse_duration
from netwatch.models import Sample

from .actions import ACTIONS
from .engine import ArmedCause, TriggerEngine, TriggerSpec, TriggerState


def failure_predicate(kinds: Iterable[str] = (), targets: Iterable[str] = ()):
    kind_set = {str(k).strip().lower() for k in kinds if k}
    target_set = {str(t).strip() for t in targets if t}

    def predicate(sample: Sample) -> bool:
        if sample.ok:
            return False
        if kind_set and sample.kind.value not in kind_set:
            return False
        if target_set and sample.target not in target_set:
            return False
        return True

    return predicate


def build_triggers(
    configs: Iterable[TriggerConfig],
    *,
    sample_bus: SampleBus | None = None,
    finding_bus: FindingBus | None = None,
    logger: Any = None,
) -> TriggerEngine:
    engine = TriggerEngine(sample_bus, finding_bus, logger=logger)
    for cfg in configs:
        factory = ACTIONS.get(cfg.action)
        if factory is None:
            raise ValueError(f"Unknown trigger action: {cfg.action}")
        engine.add_trigger(
            TriggerSpec(
                id=cfg.id,
                debounce=parse_duration(cfg.debounce, 10.0),
                cooldown=parse_duration(cfg.cooldown, 300.0),
                predicate=failure_predicate(cfg.kinds, cfg.targets),
                action=factory(**cfg.args),
            )
        )
    return engine


__all__ = [
    "ACTIONS",
    "ArmedCause",
    "TriggerEngine",
    "TriggerSpec",
    "TriggerState",
    "build_triggers",
    "failure_predicate",
]
