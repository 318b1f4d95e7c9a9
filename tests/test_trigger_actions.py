from __future__ import annotations

from pathlib import Path

import pytest

from netwatch.models import SampleKind
from netwatch.sample_meta import parse_meta
from netwatch.triggers import actions

ARP = """IP address       HW type     Flags       HW address            Mask     Device
192.168.1.1      0x1         0x2         aa:bb:cc:dd:ee:ff     *        wlan0
192.168.1.23     0x1         0x2         11:22:33:44:55:66     *        wlan0
"""

ROUTE = """Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT
wlan0\t0001A8C0\t00000000\t0001\t0\t0\t600\t00FFFFFF\t0\t0\t0
wlan0\t00000000\t0101A8C0\t0003\t0\t0\t600\t00000000\t0\t0\t0
"""

WIRELESS = """Inter-| sta-|   Quality        |   Discarded packets               | Missed | WE
 face | tus | link level noise |  nwid  crypt   frag  retry   misc | beacon | 22
 wlan0: 0000   58.  -52.  -256        0      0      0      0     12        0
"""


def test_parse_arp_table() -> None:
    rows = actions.parse_arp_table(ARP)
    assert rows == [
        {"ip": "192.168.1.1", "mac": "aa:bb:cc:dd:ee:ff", "device": "wlan0"},
        {"ip": "192.168.1.23", "mac": "11:22:33:44:55:66", "device": "wlan0"},
    ]
    assert actions.parse_arp_table("header only\n") == []


def test_parse_default_gateway() -> None:
    assert actions.parse_default_gateway(ROUTE) == {"iface": "wlan0", "gateway": "192.168.1.1"}
    assert actions.parse_default_gateway(ROUTE.splitlines()[0]) is None


def test_parse_wireless() -> None:
    assert actions.parse_wireless(WIRELESS) == [{"iface": "wlan0", "quality": 58.0, "level_dbm": -52.0}]


@pytest.mark.asyncio
async def test_next_hop_refresh_reads_route_table(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    route = tmp_path / "route"
    route.write_text(ROUTE, encoding="utf-8")
    monkeypatch.setattr(actions, "_PROC_ROUTE", route)

    samples = await actions.next_hop_refresh()()
    assert len(samples) == 1
    sample = samples[0]
    assert sample.kind == SampleKind.GATEWAY
    assert sample.ok is True
    meta = parse_meta(sample.extra)
    assert meta.pool == "trigger"
    assert meta.key == "next_hop_refresh"
    assert meta.tags["gateway"] == "192.168.1.1"


@pytest.mark.asyncio
async def test_actions_report_unsupported_platforms(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    missing = tmp_path / "missing"
    monkeypatch.setattr(actions, "_PROC_ARP", missing)
    monkeypatch.setattr(actions, "_PROC_WIRELESS", missing)

    arp = (await actions.snapshot_arp_dhcp()())[0]
    assert arp.kind == SampleKind.COLLECTOR
    assert parse_meta(arp.extra).tags["supported"] is False

    wifi = (await actions.wifi_link()())[0]
    assert parse_meta(wifi.extra).tags == {"op": "wifi_link", "supported": False}


@pytest.mark.asyncio
async def test_snapshot_arp_dhcp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    arp = tmp_path / "arp"
    arp.write_text(ARP, encoding="utf-8")
    leases = tmp_path / "dhcp"
    leases.mkdir()
    (leases / "wlan0.leases").write_text("lease {}\n", encoding="utf-8")
    monkeypatch.setattr(actions, "_PROC_ARP", arp)
    monkeypatch.setattr(actions, "_DHCP_LEASE_DIRS", [leases])

    sample = (await actions.snapshot_arp_dhcp()())[0]
    tags = parse_meta(sample.extra).tags
    assert len(tags["arp"]) == 2
    assert tags["dhcp_leases"] == [str(leases / "wlan0.leases")]


@pytest.mark.asyncio
async def test_mtu_sweep_binary_search(monkeypatch: pytest.MonkeyPatch) -> None:
    probed = []

    async def fake_ping(target: str, payload: int, timeout: float) -> bool:
        probed.append(payload)
        return payload <= 1400

    monkeypatch.setattr(actions.sys, "platform", "linux")
    monkeypatch.setattr(actions, "_ping_df", fake_ping)

    sample = (await actions.mtu_sweep("1.1.1.1", low=1200, high=1472)())[0]
    assert sample.kind == SampleKind.MTU
    assert sample.ok is True
    assert parse_meta(sample.extra).tags["mtu"] == 1428
    assert len(probed) <= 9


@pytest.mark.asyncio
async def test_mtu_sweep_without_ping_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_ping(target: str, payload: int, timeout: float) -> bool:
        raise FileNotFoundError("ping")

    monkeypatch.setattr(actions.sys, "platform", "linux")
    monkeypatch.setattr(actions, "_ping_df", fake_ping)

    sample = (await actions.mtu_sweep()())[0]
    assert sample.ok is False
    assert parse_meta(sample.extra).tags["error"] == "ping_not_found"


def test_action_registry() -> None:
    assert sorted(actions.ACTIONS) == ["mtu_sweep", "next_hop_refresh", "snapshot_arp_dhcp", "wifi_link"]
