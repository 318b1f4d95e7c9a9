from __future__ import annotations

from netwatch.config import RulesConfig
from netwatch.models import Finding, Sample, SampleKind, Severity
from netwatch.rules import CompositeRule, ConsecutiveFailRule, QuorumRule, build_rules
from netwatch.sample_meta import SampleMeta, encode_meta


def _s(ts: float, ok: bool, target: str = "8.8.8.8", extra: str | None = None) -> Sample:
    return Sample(ts, SampleKind.PING, target, ok, None, extra)


def test_consecutive_fail_fires_at_threshold() -> None:
    rule = ConsecutiveFailRule(threshold=3)
    extra = encode_meta(SampleMeta(pool="ping", key="8.8.8.8"))
    samples = [_s(1, True), _s(2, False), _s(3, False), _s(4, False, extra=extra)]

    f = rule.evaluate(samples, now=5.0)
    assert f is not None
    assert f.rule_id == "consecutive_fail"
    assert f.severity == Severity.WARNING
    assert f.timestamp == 5.0
    assert f.context["streak"] == 3
    assert f.context["pool"] == "ping"
    assert f.context["key"] == "8.8.8.8"
    assert "8.8.8.8" in f.message


def test_consecutive_fail_below_threshold() -> None:
    rule = ConsecutiveFailRule(threshold=3)
    assert rule.evaluate([_s(1, True), _s(2, False), _s(3, False)], now=4.0) is None
    assert rule.evaluate([_s(1, False), _s(2, False)], now=4.0) is None


def test_consecutive_fail_reports_full_streak_without_meta() -> None:
    rule = ConsecutiveFailRule(threshold=2)
    f = rule.evaluate([_s(i, False) for i in range(5)], now=10.0)
    assert f is not None
    assert f.context["streak"] == 5
    assert f.context["pool"] == ""
    assert f.context["key"] == "8.8.8.8"


def test_consecutive_fail_stops_at_other_target() -> None:
    rule = ConsecutiveFailRule(threshold=3)
    samples = [_s(1, False, "a"), _s(2, False, "a"), _s(3, False, "b")]
    assert rule.evaluate(samples, now=4.0) is None


def test_quorum_fires_with_enough_samples() -> None:
    now = 100.0
    samples = [_s(now - 9, False), _s(now - 7, True), _s(now - 5, False), _s(now - 1, True)]

    f = QuorumRule(window=10.0, fail_threshold=0.5, min_samples=4).evaluate(samples, now)
    assert f is not None
    assert f.rule_id == "quorum_fail"
    assert f.context["count"] == 4
    assert f.context["fails"] == 2
    assert f.context["fail_pct"] == 0.5
    assert f.context["window_sec"] == 10.0
    assert "50.0%" in f.message

    assert QuorumRule(window=10.0, fail_threshold=0.5, min_samples=5).evaluate(samples, now) is None


def test_quorum_ignores_samples_outside_window() -> None:
    now = 100.0
    samples = [_s(now - 50, False), _s(now - 40, False), _s(now - 2, True), _s(now - 1, True)]
    assert QuorumRule(window=10.0, fail_threshold=0.5, min_samples=2).evaluate(samples, now) is None
    assert QuorumRule(window=10.0, fail_threshold=0.5, min_samples=1).evaluate([], now) is None


def test_quorum_non_positive_window_defaults() -> None:
    assert QuorumRule(window=0, fail_threshold=0.5, min_samples=1).window == 60.0


class _Fixed:
    def __init__(self, finding: Finding | None):
        self.finding = finding
        self.calls = 0

    def evaluate(self, recent, now):
        self.calls += 1
        return self.finding


def test_composite_returns_first_finding() -> None:
    first = Finding(1.0, "first", Severity.INFO, "a")
    second = Finding(1.0, "second", Severity.INFO, "b")
    none_rule, r1, r2 = _Fixed(None), _Fixed(first), _Fixed(second)

    assert CompositeRule([none_rule, r1, r2]).evaluate([], 1.0) is first
    assert r2.calls == 0
    assert CompositeRule([none_rule]).evaluate([], 1.0) is None


def test_build_rules_from_config() -> None:
    chain = build_rules(RulesConfig())
    assert isinstance(chain, CompositeRule)
    assert [type(r) for r in chain.rules] == [ConsecutiveFailRule, QuorumRule]
    assert build_rules(RulesConfig(enabled=False)) is None
