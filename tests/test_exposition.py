"""Tests for the violation sink, its HTTP endpoint and the demo gauge."""
from __future__ import annotations

import random
import urllib.error
import urllib.request
from wsgiref.util import setup_testing_defaults

import pytest
from prometheus_client import CollectorRegistry

from outlier.exposition.demo import WARMUP_TICKS, ResponseTimeGenerator
from outlier.exposition.sink import ViolationSink


def _call(app, path: str) -> tuple[str, bytes]:
    environ: dict = {"PATH_INFO": path}
    setup_testing_defaults(environ)
    captured: dict[str, str] = {}

    def start_response(status: str, headers, exc_info=None):
        captured["status"] = status

    body = b"".join(app(environ, start_response))
    return captured["status"], body


class TestViolationSink:
    def test_add_increments_counter(self) -> None:
        sink = ViolationSink()
        sink.add("Rule1", 'rt{variance="wild"}')
        sink.add("Rule1", 'rt{variance="wild"}', 1)
        sink.add("Rule5", 'rt{variance="wild"}')
        assert sink.value("Rule1", 'rt{variance="wild"}') == 2.0
        assert sink.value("Rule5", 'rt{variance="wild"}') == 1.0
        assert sink.value("Rule2", 'rt{variance="wild"}') == 0.0

    def test_sinks_do_not_share_registries(self) -> None:
        a, b = ViolationSink(), ViolationSink()
        a.add("Rule1", "x")
        assert b.value("Rule1", "x") == 0.0

    def test_app_serves_metrics_path(self) -> None:
        sink = ViolationSink()
        sink.add("Rule8", "rt")
        status, body = _call(sink.app("/metrics"), "/metrics")
        assert status.startswith("200")
        assert b'nelson_rule_total{rule="Rule8",ts="rt"} 1.0' in body

    def test_app_rejects_other_paths(self) -> None:
        status, _ = _call(ViolationSink().app("/metrics"), "/other")
        assert status.startswith("404")

    def test_start_serves_over_http(self) -> None:
        sink = ViolationSink()
        sink.add("Rule3", "rt")
        host, port = sink.start("127.0.0.1:0", "/custom")
        try:
            with urllib.request.urlopen(f"http://127.0.0.1:{port}/custom", timeout=5) as resp:
                body = resp.read()
            assert b"nelson_rule_total" in body
            with pytest.raises(urllib.error.HTTPError):
                urllib.request.urlopen(f"http://127.0.0.1:{port}/metrics", timeout=5)
        finally:
            sink.stop()

    def test_stop_without_start_is_noop(self) -> None:
        ViolationSink().stop()


class TestResponseTimeGenerator:
    def test_warmup_then_diverging_ranges(self) -> None:
        registry = CollectorRegistry()
        generator = ResponseTimeGenerator(registry, rng=random.Random(7))

        for _ in range(WARMUP_TICKS + 1):
            stable, wild = generator.tick()
            assert 0 <= stable < 100 and 0 <= wild < 100

        for _ in range(200):
            stable, wild = generator.tick()
            assert 25 <= stable < 75
            assert 0 <= wild < 125

    def test_publishes_gauge(self) -> None:
        registry = CollectorRegistry()
        generator = ResponseTimeGenerator(registry, rng=random.Random(1))
        stable, wild = generator.tick()
        assert registry.get_sample_value("response_time", {"variance": "stable"}) == stable
        assert registry.get_sample_value("response_time", {"variance": "wild"}) == wild

    def test_start_stop(self) -> None:
        generator = ResponseTimeGenerator(CollectorRegistry(), period=0.01)
        generator.start()
        generator.stop()
