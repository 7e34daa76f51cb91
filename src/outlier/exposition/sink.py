"""Expose rule violations as Prometheus counters.

Every violation increments ``nelson_rule_total{rule="Rule1", ts="<series key>"}``
(prometheus_client adds the ``_total`` suffix to the ``nelson_rule`` counter).
The counters are served over HTTP for Prometheus (and Alertmanager rules) to
scrape.
"""
from __future__ import annotations

import logging
import threading
from socketserver import ThreadingMixIn
from typing import Any, Callable, Iterable
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, Counter, make_wsgi_app

from ..config import parse_endpoint

logger = logging.getLogger(__name__)

WSGIApp = Callable[[dict[str, Any], Callable[..., Any]], Iterable[bytes]]


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("exposition: " + format, *args)


def path_filter(app: WSGIApp, path: str) -> WSGIApp:
    """Serve app only on ``path``; everything else is a 404."""

    def _app(environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        if environ.get("PATH_INFO", "/") != path:
            start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"Not Found\n"]
        return app(environ, start_response)

    return _app


class ViolationSink:
    """Counter sink for Nelson rule violations.

    Args:
        registry: prometheus_client registry to register metrics in. A
                  private registry is created by default so several sinks
                  (e.g. in tests) never collide.

    Usage::

        sink = ViolationSink()
        sink.start(":8080", "/metrics")
        sink.add("Rule1", 'response_time{variance="wild"}')
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.violations = Counter(
            "nelson_rule",
            "Nelson Rule Violation.",
            ["rule", "ts"],
            registry=self.registry,
        )
        self._server: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    def add(self, rule: str, series_key: str, amount: float = 1.0) -> None:
        self.violations.labels(rule=rule, ts=series_key).inc(amount)

    def value(self, rule: str, series_key: str) -> float:
        """Current counter value (0.0 if never incremented)."""
        found = self.registry.get_sample_value("nelson_rule_total", {"rule": rule, "ts": series_key})
        return found or 0.0

    def app(self, path: str = "/metrics") -> WSGIApp:
        return path_filter(make_wsgi_app(self.registry), path)

    def start(self, endpoint: str = ":8080", path: str = "/metrics") -> tuple[str, int]:
        """Serve the counters on a daemon thread; return the bound (host, port)."""
        host, port = parse_endpoint(endpoint)
        self._server = make_server(
            host or "0.0.0.0",
            port,
            self.app(path),
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietHandler,
        )
        bound = self._server.server_address[:2]
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="exposition", daemon=True
        )
        self._thread.start()
        logger.info("Serving violations on http://%s:%s%s", bound[0], bound[1], path)
        return bound[0], bound[1]

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
