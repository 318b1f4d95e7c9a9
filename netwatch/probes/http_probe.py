from __future__ import annotations

import time

import httpx

from netwatch.models import Sample, SampleKind
from netwatch.sample_meta import SampleMeta, encode_meta


class HttpProbe:
    """Time to response headers; any status below 500 counts as reachable.

    The client is shared between probes and owned by whoever built it.
    """

    def __init__(self, url: str, client: httpx.AsyncClient, timeout: float = 3.0, user_agent: str | None = None):
        self.url = url
        self.client = client
        self.timeout = float(timeout)
        self.user_agent = user_agent
        self.id = f"http:{url}"

    async def execute(self) -> Sample:
        t0 = time.time()
        started = time.perf_counter()
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        async with self.client.stream("GET", self.url, headers=headers, timeout=self.timeout) as resp:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            status = resp.status_code
        ok = status < 500
        extra = encode_meta(SampleMeta(tags={"status_code": status}))
        return Sample(t0, SampleKind.HTTP, self.url, ok, elapsed_ms, extra)
