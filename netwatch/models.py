from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class SampleKind(str, Enum):
    PING = "ping"
    DNS = "dns"
    HTTP = "http"
    UPNP = "upnp"
    GATEWAY = "gateway"
    MTU = "mtu"
    COLLECTOR = "collector"

    @classmethod
    def coerce(cls, value: Any) -> "SampleKind":
        """Map a pool/kind name onto a sample kind; unknown names count as collectors."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.COLLECTOR


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Sample:
    timestamp: float
    kind: SampleKind
    target: str
    ok: bool
    latency_ms: float | None = None
    # Opaque payload, normally a SampleMeta JSON document.
    extra: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "target": self.target,
            "ok": self.ok,
            "latency_ms": self.latency_ms,
            "extra": self.extra,
        }


@dataclass(frozen=True)
class Finding:
    timestamp: float
    rule_id: str
    severity: Severity
    message: str
    context: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "message": self.message,
            "context": dict(self.context) if self.context is not None else None,
        }
