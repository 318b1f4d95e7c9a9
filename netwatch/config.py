"""Configuration management for the network monitor."""

import os
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError


DEFAULT_CONFIG_FILES = ("netwatch.yaml", "netwatch.yml")
PROBE_KINDS = ("ping", "dns", "http", "gateway")

_DURATION_RE = re.compile(r"^\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h)?\s*$", re.IGNORECASE)
_CLOCK_RE = re.compile(r"^\s*(?P<h>\d+):(?P<m>\d{1,2}):(?P<s>\d{1,2}(?:\.\d+)?)\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is invalid."""


def parse_duration(value: Any, default: float) -> float:
    """Parse "500ms", "2s", "1m", "1h", "HH:MM:SS" or a bare number of seconds."""
    if value is None:
        return float(default)
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip()
    if not text:
        return float(default)

    m = _CLOCK_RE.match(text)
    if m:
        return int(m.group("h")) * 3600.0 + int(m.group("m")) * 60.0 + float(m.group("s"))

    m = _DURATION_RE.match(text)
    if m:
        unit = (m.group("unit") or "s").lower()
        return float(m.group("value")) * _UNIT_SECONDS[unit]
    return float(default)


class IntervalsConfig(BaseModel):
    """Minimum interval between probes of the same target, per probe kind."""
    ping: str = Field(default="2s", description="Ping interval")
    dns: str = Field(default="5s", description="DNS interval")
    http: str = Field(default="10s", description="HTTP interval")
    gateway: str = Field(default="5s", description="Gateway ping interval")


class TimeoutsConfig(BaseModel):
    """Per-call probe timeouts."""
    ping: str = Field(default="1s", description="Ping reply timeout")
    dns: str = Field(default="2s", description="DNS resolve timeout")
    http: str = Field(default="3s", description="HTTP request timeout")
    gateway: str = Field(default="1s", description="Gateway ping reply timeout")


class TargetsConfig(BaseModel):
    """Monitored targets per probe kind."""
    ping: List[str] = Field(default_factory=lambda: ["1.1.1.1", "8.8.8.8"])
    dns: List[str] = Field(default_factory=lambda: ["github.com"])
    http: List[str] = Field(default_factory=lambda: ["https://www.google.com/generate_204"])
    gateway: List[str] = Field(default_factory=list, description="Gateways to ping; \"auto\" follows the default route")
    weights: Dict[str, int] = Field(default_factory=dict, description="Per-target scheduling weight (default 1)")


class FiltersConfig(BaseModel):
    """Substring allow/deny lists applied to every target."""
    allow: List[str] = Field(default_factory=list)
    deny: List[str] = Field(default_factory=list)


class DnsConfig(BaseModel):
    resolvers: List[str] = Field(default_factory=list, description="Custom resolvers; empty uses the system ones")


class HttpConfig(BaseModel):
    user_agent: str = Field(default="netwatch/0.1", description="User-Agent sent by HTTP probes")


class SinksConfig(BaseModel):
    """Output files for samples and findings."""
    csv: Optional[str] = Field(default="netwatch.csv", description="CSV output path")
    jsonl: Optional[str] = Field(default="netwatch.jsonl", description="JSON Lines output path")
    directory: str = Field(default=".", description="Directory for relative sink paths")
    append_timestamp: bool = Field(default=True, description="Write a new timestamped file per run")
    log_samples: bool = Field(default=True, description="Log one line per sample")


class SchedulerConfig(BaseModel):
    """Target pool scheduling policy."""
    jitter_pct: float = Field(default=0.2, ge=0.0, le=1.0)
    backoff_base: float = Field(default=2.0, ge=1.0)
    backoff_max_multiplier: float = Field(default=8.0, ge=1.0)
    decay_half_life: str = Field(default="5m", description="Failure count half-life while idle")
    concurrency: int = Field(default=1, ge=1, description="Probes executed concurrently by the orchestrator")
    idle_sleep: str = Field(default="100ms", description="Upper bound on the orchestrator idle sleep")


class OrchestrationConfig(BaseModel):
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    tick_interval: str = Field(default="1s", description="Trigger engine tick interval")
    summary_interval: str = Field(default="30s", description="Stats summary log interval")
    summary_window: str = Field(default="1m", description="Window used by the stats summary")
    stats_retention: str = Field(default="10m", description="Per-target history retention")


class QuorumRuleConfig(BaseModel):
    window: str = Field(default="60s")
    fail_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    min_samples: int = Field(default=5, ge=1)


class RulesConfig(BaseModel):
    """Finding detectors evaluated after each probe."""
    enabled: bool = Field(default=True)
    consecutive_fail_threshold: int = Field(default=3, ge=1)
    quorum: QuorumRuleConfig = Field(default_factory=QuorumRuleConfig)


class TriggerConfig(BaseModel):
    """A reaction to sustained failures."""
    id: str
    action: str = Field(description="Name of a built-in action (see netwatch.triggers.actions.ACTIONS)")
    debounce: str = Field(default="10s")
    cooldown: str = Field(default="5m")
    kinds: List[str] = Field(default_factory=list, description="Only failures of these kinds arm the trigger")
    targets: List[str] = Field(default_factory=list, description="Only failures of these targets arm the trigger")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the action factory")


class ApiConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765)


class NetwatchConfig(BaseModel):
    """Main configuration for the network monitor."""

    log_level: str = Field(default="INFO", description="Logging level")

    intervals: IntervalsConfig = Field(default_factory=IntervalsConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    targets: TargetsConfig = Field(default_factory=TargetsConfig)
    filters: FiltersConfig = Field(default_factory=FiltersConfig)
    dns: DnsConfig = Field(default_factory=DnsConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    sinks: SinksConfig = Field(default_factory=SinksConfig)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    triggers: List[TriggerConfig] = Field(default_factory=list)
    api: ApiConfig = Field(default_factory=ApiConfig)


class ValidationResult(BaseModel):
    ok: bool
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        s = str(item or "").strip()
        if not s or s.lower() in seen:
            continue
        seen.add(s.lower())
        out.append(s)
    return out


def validate_config(cfg: NetwatchConfig) -> ValidationResult:
    """Normalize targets in place and report warnings and errors."""
    warnings: List[str] = []
    errors: List[str] = []

    targets = cfg.targets
    targets.ping = _dedupe(targets.ping)
    targets.dns = _dedupe(targets.dns)
    targets.http = _dedupe(targets.http)
    targets.gateway = _dedupe(targets.gateway)

    allow = [a.lower() for a in cfg.filters.allow if a]
    deny = [d.lower() for d in cfg.filters.deny if d]
    if allow or deny:
        def allowed(s: str) -> bool:
            low = s.lower()
            allow_ok = not allow or any(a in low for a in allow)
            return allow_ok and not any(d in low for d in deny)

        before = sum(len(getattr(targets, kind)) for kind in PROBE_KINDS)
        for kind in PROBE_KINDS:
            setattr(targets, kind, [t for t in getattr(targets, kind) if allowed(t)])
        after = sum(len(getattr(targets, kind)) for kind in PROBE_KINDS)
        if after < before:
            warnings.append(f"Filters removed {before - after} target(s) via allow/deny lists.")

    for kind in ("ping", "dns", "http"):
        if not getattr(targets, kind):
            warnings.append(f"No {kind} targets configured.")

    for name in PROBE_KINDS:
        if parse_duration(getattr(cfg.intervals, name), 0.0) <= 0:
            errors.append(f"intervals.{name} must be a positive duration.")

    for key, weight in targets.weights.items():
        if weight < 1:
            errors.append(f"targets.weights[{key!r}] must be >= 1.")

    retention = parse_duration(cfg.orchestration.stats_retention, 600.0)
    quorum_window = parse_duration(cfg.rules.quorum.window, 60.0)
    if retention < quorum_window:
        warnings.append("orchestration.stats_retention is shorter than rules.quorum.window; quorum sees truncated history.")

    from netwatch.triggers.actions import ACTIONS

    seen_ids = set()
    for trig in cfg.triggers:
        if trig.id in seen_ids:
            errors.append(f"Duplicate trigger id {trig.id!r}.")
        seen_ids.add(trig.id)
        if trig.action not in ACTIONS:
            errors.append(f"Trigger {trig.id!r} uses unknown action {trig.action!r}.")

    return ValidationResult(ok=not errors, warnings=warnings, errors=errors)


def load_config(config_path: Optional[str] = None) -> NetwatchConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("NETWATCH_CONFIG")
    if config_path is None:
        config_path = next((p for p in DEFAULT_CONFIG_FILES if os.path.exists(p)), None)

    config_data: Dict[str, Any] = {}

    if config_path:
        if not os.path.exists(config_path):
            raise ConfigError(f"Config file not found: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")

    # Override with environment variables
    log_level = os.getenv("NETWATCH_LOG_LEVEL")
    if log_level:
        config_data["log_level"] = log_level
    api_port = os.getenv("NETWATCH_API_PORT")
    if api_port:
        config_data.setdefault("api", {})
        config_data["api"]["port"] = int(api_port)

    try:
        return NetwatchConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
