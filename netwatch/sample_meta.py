from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any

from netwatch.models import Sample


@dataclass(frozen=True)
class SampleMeta:
    pool: str | None = None
    key: str | None = None
    tags: dict[str, Any] | None = None


def encode_meta(meta: SampleMeta) -> str:
    payload: dict[str, Any] = {}
    if meta.pool is not None:
        payload["pool"] = meta.pool
    if meta.key is not None:
        payload["key"] = meta.key
    if meta.tags is not None:
        payload["tags"] = meta.tags
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def parse_meta(extra: str | None) -> SampleMeta | None:
    """
    Best-effort decode of a sample's extra payload.
    Anything that is not a JSON object yields None instead of raising.
    """
    if not isinstance(extra, str) or not extra.strip():
        return None
    try:
        obj = json.loads(extra)
    except Exception:
        return None
    if not isinstance(obj, dict):
        return None

    pool = obj.get("pool")
    key = obj.get("key")
    tags = obj.get("tags")
    return SampleMeta(
        pool=str(pool) if pool is not None else None,
        key=str(key) if key is not None else None,
        tags=dict(tags) if isinstance(tags, dict) else None,
    )


def meta_source(sample: Sample) -> str:
    meta = parse_meta(sample.extra)
    if meta is None:
        return "(unknown)"
    return f"{meta.pool or ''}:{meta.key or ''}"


def tag_sample(sample: Sample, *, pool: str, key: str) -> Sample:
    meta = parse_meta(sample.extra)
    if meta is None:
        tags = None
        # Free-form probe payloads end up under tags.detail.
        if isinstance(sample.extra, str) and sample.extra.strip():
            tags = {"detail": sample.extra}
        meta = SampleMeta(tags=tags)
    meta = replace(meta, pool=pool, key=key)
    return replace(sample, extra=encode_meta(meta))
