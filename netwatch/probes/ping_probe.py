from __future__ import annotations

import asyncio
import re
import sys
import time

from netwatch.models import Sample, SampleKind

_TIME_RE = re.compile(r"time[=<]\s*(?P<ms>\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)


def parse_ping_latency_ms(output: str) -> float | None:
    m = _TIME_RE.search(output or "")
    if not m:
        return None
    try:
        return float(m.group("ms"))
    except ValueError:
        return None


def _ping_command(target: str, timeout_seconds: float) -> list[str]:
    if sys.platform.startswith("win"):
        return ["ping", "-n", "1", "-w", str(max(1, int(timeout_seconds * 1000))), target]
    if sys.platform == "darwin":
        return ["ping", "-c", "1", "-W", str(max(1, int(timeout_seconds * 1000))), target]
    return ["ping", "-c", "1", "-W", str(max(1, int(round(timeout_seconds)))), target]


class PingProbe:
    def __init__(self, target: str, timeout: float = 1.0):
        self.target = target
        self.timeout = float(timeout)
        self.id = f"ping:{target}"

    async def execute(self) -> Sample:
        t0 = time.time()
        proc = await asyncio.create_subprocess_exec(
            *_ping_command(self.target, self.timeout),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout + 1.0)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return Sample(t0, SampleKind.PING, self.target, False)

        latency = parse_ping_latency_ms(stdout.decode("utf-8", errors="replace"))
        ok = proc.returncode == 0 and latency is not None
        return Sample(t0, SampleKind.PING, self.target, ok, latency if ok else None)
