from __future__ import annotations

import asyncio

import httpx
import pytest

from netwatch.config import NetwatchConfig
from netwatch.models import Sample, SampleKind
from netwatch.probes import DnsProbe, GatewayProbe, HttpProbe, PingProbe, build_probe_factories
from netwatch.probes import dns_probe, ping_probe
from netwatch.probes.gateway_probe import read_default_gateway
from netwatch.sample_meta import parse_meta


class _FakeProc:
    def __init__(self, returncode: int, stdout: bytes):
        self.returncode = returncode
        self._stdout = stdout

    async def communicate(self):
        return self._stdout, b""


def test_parse_ping_latency_ms() -> None:
    assert ping_probe.parse_ping_latency_ms("64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=12.4 ms") == 12.4
    assert ping_probe.parse_ping_latency_ms("Reply from 8.8.8.8: bytes=32 time<1ms TTL=117") == 1.0
    assert ping_probe.parse_ping_latency_ms("Request timed out.") is None
    assert ping_probe.parse_ping_latency_ms("") is None


def test_ping_command_per_platform(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ping_probe.sys, "platform", "linux")
    assert ping_probe._ping_command("1.1.1.1", 1.0) == ["ping", "-c", "1", "-W", "1", "1.1.1.1"]
    monkeypatch.setattr(ping_probe.sys, "platform", "win32")
    assert ping_probe._ping_command("1.1.1.1", 1.5) == ["ping", "-n", "1", "-w", "1500", "1.1.1.1"]


@pytest.mark.asyncio
async def test_ping_probe_success_and_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    procs = [
        _FakeProc(0, b"64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=9.5 ms\n"),
        _FakeProc(1, b"1 packets transmitted, 0 received\n"),
    ]

    async def fake_exec(*args, **kwargs):
        return procs.pop(0)

    monkeypatch.setattr(ping_probe.asyncio, "create_subprocess_exec", fake_exec)
    probe = PingProbe("1.1.1.1")

    ok = await probe.execute()
    assert ok.kind == SampleKind.PING
    assert ok.ok is True
    assert ok.latency_ms == 9.5

    bad = await probe.execute()
    assert bad.ok is False
    assert bad.latency_ms is None


@pytest.mark.asyncio
async def test_dns_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_resolve(*, domain, resolvers, timeout_seconds):
        seen.update(domain=domain, resolvers=resolvers)
        return ["140.82.121.4", "140.82.121.3", "::1", "::2"] if domain == "github.com" else []

    monkeypatch.setattr(dns_probe, "_resolve_sync", fake_resolve)

    sample = await DnsProbe(" github.com ", resolvers=["9.9.9.9"]).execute()
    assert seen == {"domain": "github.com", "resolvers": ["9.9.9.9"]}
    assert sample.kind == SampleKind.DNS
    assert sample.target == "github.com"
    assert sample.ok is True
    assert sample.latency_ms is not None
    assert parse_meta(sample.extra).tags == {"addresses": ["140.82.121.4", "140.82.121.3", "::1"]}

    empty = await DnsProbe("nx.invalid").execute()
    assert empty.ok is False
    assert empty.extra is None


@pytest.mark.asyncio
async def test_dns_probe_propagates_resolver_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_resolve(**kwargs):
        raise OSError("no resolver")

    monkeypatch.setattr(dns_probe, "_resolve_sync", fake_resolve)
    with pytest.raises(OSError):
        await DnsProbe("github.com").execute()


@pytest.mark.asyncio
async def test_http_probe_status_classification() -> None:
    statuses = {"/ok": 204, "/missing": 404, "/broken": 503}
    seen_agents = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_agents.append(request.headers.get("user-agent"))
        return httpx.Response(statuses[request.url.path])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        ok = await HttpProbe("http://svc/ok", client=client, user_agent="netwatch-test").execute()
        missing = await HttpProbe("http://svc/missing", client=client).execute()
        broken = await HttpProbe("http://svc/broken", client=client).execute()
    finally:
        await client.aclose()

    assert ok.ok is True and ok.kind == SampleKind.HTTP
    assert parse_meta(ok.extra).tags == {"status_code": 204}
    assert missing.ok is True
    assert broken.ok is False
    assert parse_meta(broken.extra).tags == {"status_code": 503}
    assert seen_agents[0] == "netwatch-test"


@pytest.mark.asyncio
async def test_http_probe_raises_on_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(httpx.ConnectError):
            await HttpProbe("http://svc/", client=client).execute()
    finally:
        await client.aclose()


def test_build_probe_factories_only_for_configured_kinds() -> None:
    cfg = NetwatchConfig()
    cfg.targets.http = []
    cfg.timeouts.ping = "2s"

    factories = build_probe_factories(cfg)
    assert sorted(factories) == ["dns", "ping"]
    probe = factories["ping"]("1.1.1.1")
    assert isinstance(probe, PingProbe)
    assert probe.timeout == 2.0
    assert isinstance(factories["dns"]("github.com"), DnsProbe)


def test_ping_probe_timeout_kills_process(monkeypatch: pytest.MonkeyPatch) -> None:
    class _Hung:
        returncode = None
        killed = False

        async def communicate(self):
            await asyncio.sleep(10)

        def kill(self):
            self.killed = True

        async def wait(self):
            return -9

    hung = _Hung()

    async def fake_exec(*args, **kwargs):
        return hung

    monkeypatch.setattr(ping_probe.asyncio, "create_subprocess_exec", fake_exec)
    sample = asyncio.run(PingProbe("10.255.255.1", timeout=0.01).execute())
    assert sample.ok is False
    assert hung.killed


ROUTE = """Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT
eth0\t00000000\t0101A8C0\t0003\t0\t0\t100\t00000000\t0\t0\t0
"""


class _FakePing:
    pinged: list[tuple[str, float]] = []

    def __init__(self, target: str, timeout: float = 1.0):
        self.target = target
        self.timeout = timeout

    async def execute(self) -> Sample:
        _FakePing.pinged.append((self.target, self.timeout))
        return Sample(0.0, SampleKind.PING, self.target, True, 2.5)


def test_read_default_gateway(tmp_path) -> None:
    route = tmp_path / "route"
    route.write_text(ROUTE)
    assert read_default_gateway(route) == {"iface": "eth0", "gateway": "192.168.1.1"}
    assert read_default_gateway(tmp_path / "missing") is None


@pytest.mark.asyncio
async def test_gateway_probe_follows_default_route(tmp_path) -> None:
    route = tmp_path / "route"
    route.write_text(ROUTE)
    _FakePing.pinged = []

    probe = GatewayProbe("auto", timeout=0.5, route_path=route, ping_factory=_FakePing)
    sample = await probe.execute()
    assert _FakePing.pinged == [("192.168.1.1", 0.5)]
    assert sample.kind == SampleKind.GATEWAY
    assert sample.target == "auto"
    assert sample.ok is True
    assert sample.latency_ms == 2.5
    assert parse_meta(sample.extra).tags == {"iface": "eth0", "gateway": "192.168.1.1", "resolved": True}

    # The route is re-read on every execution.
    route.write_text(ROUTE.replace("0101A8C0", "FE01A8C0"))
    await probe.execute()
    assert _FakePing.pinged[-1] == ("192.168.1.254", 0.5)


@pytest.mark.asyncio
async def test_gateway_probe_without_default_route_fails(tmp_path) -> None:
    _FakePing.pinged = []
    probe = GatewayProbe("default", route_path=tmp_path / "missing", ping_factory=_FakePing)
    sample = await probe.execute()
    assert sample.ok is False
    assert sample.kind == SampleKind.GATEWAY
    assert parse_meta(sample.extra).tags == {"resolved": False}
    assert _FakePing.pinged == []


@pytest.mark.asyncio
async def test_gateway_probe_pings_pinned_address() -> None:
    _FakePing.pinged = []
    sample = await GatewayProbe("10.0.0.1", ping_factory=_FakePing).execute()
    assert _FakePing.pinged == [("10.0.0.1", 1.0)]
    assert sample.ok is True
    assert parse_meta(sample.extra).tags == {"gateway": "10.0.0.1", "resolved": True}


def test_build_probe_factories_gateway_and_http_client() -> None:
    cfg = NetwatchConfig()
    cfg.targets.gateway = ["auto"]
    cfg.timeouts.gateway = "2s"

    with pytest.raises(ValueError):
        build_probe_factories(cfg)

    client = httpx.AsyncClient()
    factories = build_probe_factories(cfg, http_client=client)
    assert sorted(factories) == ["dns", "gateway", "http", "ping"]
    gateway = factories["gateway"]("auto")
    assert isinstance(gateway, GatewayProbe)
    assert gateway.timeout == 2.0
    http = factories["http"]("https://example.com/")
    assert isinstance(http, HttpProbe)
    assert http.client is client
