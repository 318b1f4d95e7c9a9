from __future__ import annotations

import asyncio
import time

from netwatch.models import Sample, SampleKind
from netwatch.sample_meta import SampleMeta, encode_meta


def _resolve_sync(*, domain: str, resolvers: list[str] | None, timeout_seconds: float) -> list[str]:
    import dns.resolver  # type: ignore

    r = dns.resolver.Resolver(configure=True)
    if resolvers:
        r.nameservers = list(resolvers)
    r.timeout = max(0.5, float(timeout_seconds))
    r.lifetime = max(0.5, float(timeout_seconds))

    out: list[str] = []
    for record_type in ("A", "AAAA"):
        try:
            ans = r.resolve(domain, record_type)
        except dns.resolver.NoAnswer:
            # No AAAA (or A) record is a normal outcome.
            continue
        for rr in ans:
            s = str(rr or "").strip()
            if s:
                out.append(s)
    return out


class DnsProbe:
    def __init__(self, domain: str, timeout: float = 2.0, resolvers: list[str] | None = None):
        self.domain = str(domain or "").strip()
        self.timeout = float(timeout)
        self.resolvers = list(resolvers) if resolvers else None
        self.id = f"dns:{self.domain}"

    async def execute(self) -> Sample:
        t0 = time.time()
        started = time.perf_counter()
        addrs = await asyncio.wait_for(
            asyncio.to_thread(
                _resolve_sync,
                domain=self.domain,
                resolvers=self.resolvers,
                timeout_seconds=self.timeout,
            ),
            timeout=self.timeout + 0.5,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        extra = encode_meta(SampleMeta(tags={"addresses": addrs[:3]})) if addrs else None
        return Sample(t0, SampleKind.DNS, self.domain, bool(addrs), elapsed_ms, extra)
