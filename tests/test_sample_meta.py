from __future__ import annotations

import json

from netwatch.models import Sample, SampleKind
from netwatch.sample_meta import SampleMeta, encode_meta, meta_source, parse_meta, tag_sample


def test_encode_omits_missing_fields() -> None:
    assert json.loads(encode_meta(SampleMeta(pool="ping", key="1.1.1.1"))) == {"pool": "ping", "key": "1.1.1.1"}
    assert encode_meta(SampleMeta()) == "{}"


def test_parse_meta_tolerates_garbage() -> None:
    for extra in (None, "", "   ", "not json", "[1, 2]", "42", "{broken"):
        assert parse_meta(extra) is None

    meta = parse_meta('{"pool": "dns", "key": "github.com", "tags": {"addresses": ["1.2.3.4"]}}')
    assert meta == SampleMeta(pool="dns", key="github.com", tags={"addresses": ["1.2.3.4"]})

    assert parse_meta('{"tags": "nope"}') == SampleMeta()


def test_meta_source() -> None:
    tagged = Sample(0.0, SampleKind.PING, "gw", True, None, encode_meta(SampleMeta(pool="ping", key="gw")))
    assert meta_source(tagged) == "ping:gw"
    assert meta_source(Sample(0.0, SampleKind.PING, "gw", True)) == "(unknown)"


def test_tag_sample_overrides_pool_and_key_and_keeps_tags() -> None:
    base = Sample(1.0, SampleKind.HTTP, "https://x", True, 12.0, encode_meta(SampleMeta(pool="old", tags={"status_code": 204})))
    tagged = tag_sample(base, pool="http", key="https://x")
    meta = parse_meta(tagged.extra)
    assert meta == SampleMeta(pool="http", key="https://x", tags={"status_code": 204})
    assert tagged.latency_ms == 12.0


def test_tag_sample_preserves_free_form_extra() -> None:
    tagged = tag_sample(Sample(1.0, SampleKind.PING, "gw", False, None, "timeout"), pool="ping", key="gw")
    assert parse_meta(tagged.extra).tags == {"detail": "timeout"}

    bare = tag_sample(Sample(1.0, SampleKind.PING, "gw", True), pool="ping", key="gw")
    assert parse_meta(bare.extra) == SampleMeta(pool="ping", key="gw")
