from __future__ import annotations

import asyncio
import socket
import struct
import sys
import time
from pathlib import Path
from typing import Any, Callable

from netwatch.models import Sample, SampleKind
from netwatch.sample_meta import SampleMeta, encode_meta
from netwatch.triggers.engine import TriggerAction

# IPv4 + ICMP header bytes on top of the ping payload size.
_ICMP_OVERHEAD = 28

_PROC_ARP = Path("/proc/net/arp")
_PROC_ROUTE = Path("/proc/net/route")
_PROC_WIRELESS = Path("/proc/net/wireless")
_DHCP_LEASE_DIRS = [Path("/var/lib/dhcp"), Path("/var/lib/dhclient"), Path("/var/lib/NetworkManager")]


def _make(kind: SampleKind, key: str, ok: bool, tags: dict[str, Any]) -> Sample:
    return Sample(
        timestamp=time.time(),
        kind=kind,
        target=key,
        ok=ok,
        latency_ms=None,
        extra=encode_meta(SampleMeta(pool="trigger", key=key, tags=tags)),
    )


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def parse_arp_table(text: str) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 6:
            continue
        rows.append({"ip": parts[0], "mac": parts[3], "device": parts[5]})
    return rows


def parse_default_gateway(text: str) -> dict[str, str] | None:
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 3 or parts[1] != "00000000":
            continue
        try:
            gateway = socket.inet_ntoa(struct.pack("<L", int(parts[2], 16)))
        except (ValueError, struct.error):
            continue
        return {"iface": parts[0], "gateway": gateway}
    return None


def parse_wireless(text: str) -> list[dict[str, Any]]:
    links: list[dict[str, Any]] = []
    # First two lines are headers.
    for line in text.splitlines()[2:]:
        if ":" not in line:
            continue
        iface, rest = line.split(":", 1)
        fields = rest.split()
        if len(fields) < 3:
            continue
        try:
            quality = float(fields[1].rstrip("."))
            level = float(fields[2].rstrip("."))
        except ValueError:
            continue
        links.append({"iface": iface.strip(), "quality": quality, "level_dbm": level})
    return links


async def _ping_df(target: str, payload: int, timeout: float) -> bool:
    proc = await asyncio.create_subprocess_exec(
        "ping", "-c", "1", "-M", "do", "-s", str(payload), "-W", str(max(1, int(round(timeout)))), target,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        rc = await asyncio.wait_for(proc.wait(), timeout=timeout + 1.0)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return False
    return rc == 0


def mtu_sweep(target: str = "8.8.8.8", low: int = 1200, high: int = 1472, timeout: float = 1.0) -> TriggerAction:
    """Binary search the largest unfragmented ping payload towards target."""

    async def action() -> list[Sample]:
        if not sys.platform.startswith("linux"):
            return [_make(SampleKind.MTU, "mtu_sweep", True, {"op": "mtu_sweep", "target": target, "supported": False})]

        lo, hi = int(low), int(high)
        best: int | None = None
        try:
            while lo <= hi:
                mid = (lo + hi) // 2
                if await _ping_df(target, mid, timeout):
                    best = mid
                    lo = mid + 1
                else:
                    hi = mid - 1
        except FileNotFoundError:
            return [_make(SampleKind.MTU, "mtu_sweep", False, {"op": "mtu_sweep", "target": target, "error": "ping_not_found"})]

        tags = {
            "op": "mtu_sweep",
            "target": target,
            "method": "ping_df",
            "mtu": (best + _ICMP_OVERHEAD) if best is not None else None,
        }
        return [_make(SampleKind.MTU, "mtu_sweep", best is not None, tags)]

    return action


def snapshot_arp_dhcp() -> TriggerAction:
    """Capture the neighbour table and the DHCP lease files present on the host."""

    async def action() -> list[Sample]:
        text = await asyncio.to_thread(_read_text, _PROC_ARP)
        if text is None:
            tags = {"op": "snapshot", "kind": "arp_dhcp", "platform": sys.platform, "supported": False}
            return [_make(SampleKind.COLLECTOR, "snapshot.arp_dhcp", True, tags)]

        leases: list[str] = []
        for d in _DHCP_LEASE_DIRS:
            if d.is_dir():
                leases.extend(sorted(str(p) for p in d.glob("*.lease*")))
        tags = {
            "op": "snapshot",
            "kind": "arp_dhcp",
            "platform": sys.platform,
            "arp": parse_arp_table(text),
            "dhcp_leases": leases,
        }
        return [_make(SampleKind.COLLECTOR, "snapshot.arp_dhcp", True, tags)]

    return action


def next_hop_refresh() -> TriggerAction:
    """Re-read the default route so a gateway change shows up in the sample stream."""

    async def action() -> list[Sample]:
        text = await asyncio.to_thread(_read_text, _PROC_ROUTE)
        if text is None:
            return [_make(SampleKind.GATEWAY, "next_hop_refresh", True, {"op": "next_hop_refresh", "supported": False})]
        route = parse_default_gateway(text)
        tags: dict[str, Any] = {"op": "next_hop_refresh", "refreshed": True}
        if route is not None:
            tags.update(route)
        return [_make(SampleKind.GATEWAY, "next_hop_refresh", route is not None, tags)]

    return action


def wifi_link() -> TriggerAction:
    """Report wireless link quality where the platform exposes it."""

    async def action() -> list[Sample]:
        text = await asyncio.to_thread(_read_text, _PROC_WIRELESS)
        if text is None:
            return [_make(SampleKind.COLLECTOR, "wifi_link", True, {"op": "wifi_link", "supported": False})]
        links = parse_wireless(text)
        return [_make(SampleKind.COLLECTOR, "wifi_link", True, {"op": "wifi_link", "supported": True, "links": links})]

    return action


ACTIONS: dict[str, Callable[..., TriggerAction]] = {
    "mtu_sweep": mtu_sweep,
    "snapshot_arp_dhcp": snapshot_arp_dhcp,
    "next_hop_refresh": next_hop_refresh,
    "wifi_link": wifi_link,
}
