from __future__ import annotations

import csv
import io
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog

from netwatch.models import Finding, Sample, SampleKind

CSV_HEADER = ["ts", "kind", "target", "ok", "ms", "extra"]


class ResultSink(Protocol):
    def write_sample(self, sample: Sample) -> None: ...

    def write_finding(self, finding: Finding) -> None: ...

    def close(self) -> None: ...


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def timestamped_path(path: str | Path, *, now: datetime | None = None) -> Path:
    """netwatch.csv -> netwatch-20250101-120000.csv"""
    p = Path(path)
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return p.with_name(f"{p.stem}-{stamp}{p.suffix}")


class _AppendFile:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8", newline="")
        self._lock = threading.Lock()

    def write_line(self, line: str) -> None:
        with self._lock:
            self._fh.write(line + "\n")
            self._fh.flush()

    def close(self) -> None:
        with self._lock:
            if not self._fh.closed:
                self._fh.close()


class CsvSink:
    """One row per sample; findings become collector rows named finding:<rule_id>."""

    def __init__(self, path: str | Path):
        self._file = _AppendFile(path)
        if self._file.path.stat().st_size == 0:
            self._file.write_line(",".join(CSV_HEADER))

    @property
    def path(self) -> Path:
        return self._file.path

    def write_sample(self, sample: Sample) -> None:
        extra = (sample.extra or "").replace('"', "'").replace("\n", " ")
        row = [
            _iso(sample.timestamp),
            sample.kind.value,
            sample.target,
            "true" if sample.ok else "false",
            f"{sample.latency_ms:.3f}" if sample.latency_ms is not None else "",
            extra,
        ]
        buf = io.StringIO()
        csv.writer(buf, lineterminator="").writerow(row)
        self._file.write_line(buf.getvalue())

    def write_finding(self, finding: Finding) -> None:
        extra = json.dumps(
            {
                "rule_id": finding.rule_id,
                "severity": finding.severity.value,
                "message": finding.message,
                "context": dict(finding.context) if finding.context is not None else None,
            },
            ensure_ascii=False,
            default=str,
        )
        self.write_sample(Sample(finding.timestamp, SampleKind.COLLECTOR, f"finding:{finding.rule_id}", True, None, extra))

    def close(self) -> None:
        self._file.close()


class JsonlSink:
    def __init__(self, path: str | Path):
        self._file = _AppendFile(path)

    @property
    def path(self) -> Path:
        return self._file.path

    def write_sample(self, sample: Sample) -> None:
        self._file.write_line(json.dumps({"type": "sample", **sample.to_dict()}, ensure_ascii=False, default=str))

    def write_finding(self, finding: Finding) -> None:
        self._file.write_line(json.dumps({"type": "finding", **finding.to_dict()}, ensure_ascii=False, default=str))

    def close(self) -> None:
        self._file.close()


class LogSink:
    """Console line per sample and finding."""

    def __init__(self, logger: Any = None, extra_max_chars: int = 120):
        self.logger = logger or structlog.get_logger("netwatch.samples")
        self.extra_max_chars = extra_max_chars

    def write_sample(self, sample: Sample) -> None:
        fields: dict[str, Any] = {
            "kind": sample.kind.value.upper(),
            "target": sample.target,
            "status": "OK" if sample.ok else "FAIL",
        }
        if sample.latency_ms is not None:
            fields["ms"] = round(sample.latency_ms)
        if sample.extra:
            extra = sample.extra
            if len(extra) > self.extra_max_chars:
                extra = extra[: self.extra_max_chars] + "…"
            fields["extra"] = extra
        if sample.ok:
            self.logger.info("sample", **fields)
        else:
            self.logger.warning("sample", **fields)

    def write_finding(self, finding: Finding) -> None:
        log = self.logger.info if finding.severity.value == "info" else self.logger.warning
        log("finding", rule_id=finding.rule_id, severity=finding.severity.value, message=finding.message)

    def close(self) -> None:
        return None
