"""Outlier CLI — entry point.

Commands:
    outlier run               Poll Prometheus and expose Nelson rule violations
    outlier rules             Show the rule catalog
    outlier evaluate <file>   Evaluate one series offline from a CSV / JSON-lines file
"""
from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .config import Settings, load_settings
from .exceptions import ConfigurationError, OutlierError
from .nelson.rules import ALL_RULES, resolve_rules
from .nelson.series import Sample, SeriesEvaluator

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("outlier")

# ── Helpers ─────────────────────────────────────────────────────────────────


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


def _parse_timestamp(raw: Any) -> float:
    """Unix seconds from a number or an ISO-8601 string."""
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip()
    try:
        return float(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp()
    except ValueError:
        raise click.BadParameter(f"Cannot parse timestamp: {text!r}") from None


def _read_samples(path: Path, fmt: str) -> Iterator[Sample]:
    """Stream samples from ``timestamp,value`` CSV or JSON-lines input."""
    with path.open(encoding="utf-8") as fh:
        for lineno, raw_line in enumerate(fh, start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            line_fmt = fmt if fmt != "auto" else ("json" if line.startswith("{") else "csv")
            if line_fmt == "json":
                try:
                    record = json.loads(line)
                    yield Sample(_parse_timestamp(record["timestamp"]), float(record["value"]))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    raise click.ClickException(f"{path.name}:{lineno}: bad JSON sample ({exc})")
                continue

            parts = [p.strip() for p in line.split(",")]
            if len(parts) < 2:
                raise click.ClickException(f"{path.name}:{lineno}: expected 'timestamp,value'")
            try:
                value = float(parts[1])
            except ValueError:
                if lineno == 1:
                    continue  # header
                raise click.ClickException(f"{path.name}:{lineno}: value {parts[1]!r} is not numeric")
            yield Sample(_parse_timestamp(parts[0]), value)


# ── CLI root ─────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version="1.0.0", prog_name="outlier")
def main() -> None:
    """outlier — Nelson rule anomaly detection for Prometheus time series."""


# ── run ──────────────────────────────────────────────────────────────────────


@main.command()
@click.option("--server", default=None, help="Prometheus server URL (env: PROMETHEUS_SERVER).")
@click.option("--sample-size", type=int, default=None, help="Data points used to calculate mean and standard deviation.  [default: 50]")
@click.option("--offset", default=None, help="Offset (Xm, Xh, or Xd) from now for sample collection.  [default: 0m]")
@click.option("--interval", default=None, help="Query interval (Xs); about 2x the scrape interval.  [default: 30s]")
@click.option("--endpoint", default=None, help="Bind address of the violations endpoint.  [default: :8080]")
@click.option("--metrics-path", default=None, help="HTTP path of the violations endpoint.  [default: /metrics]")
@click.option("--expression", "-e", "expressions", multiple=True, help="Time-series expression to poll (repeatable).")
@click.option("--rules", "-r", default=None, help="Rule preset (all|common) or comma-separated rule names.  [default: common]")
@click.option("--retries", type=int, default=None, help="Query retries per poll cycle before giving up.  [default: 0]")
@click.option("--log-level", default=None, help="Logging level.  [default: INFO]")
@click.option("--demo", is_flag=True, help="Also publish a synthetic response_time gauge.")
def run(
    server: str | None,
    sample_size: int | None,
    offset: str | None,
    interval: str | None,
    endpoint: str | None,
    metrics_path: str | None,
    expressions: tuple[str, ...],
    rules: str | None,
    retries: int | None,
    log_level: str | None,
    demo: bool,
) -> None:
    """Poll Prometheus and expose Nelson rule violations as counters.

    \b
    Examples:
      outlier run
      outlier run --server http://prom:9090 --sample-size 100 --interval 1m
      outlier run -e 'http_request_duration_seconds' -e 'queue_depth' --rules all
      outlier run --demo --offset 10m
    """
    try:
        settings = load_settings(
            server=server,
            sample_size=sample_size,
            offset=offset,
            interval=interval,
            endpoint=endpoint,
            metrics_path=metrics_path,
            expressions=list(expressions) or None,
            rules=rules,
            query_retries=retries,
            log_level=log_level,
        )
    except ConfigurationError as exc:
        _fail(str(exc))
        return

    _configure_logging(settings.log_level)
    logger.info("Options: %s", settings.model_dump())
    serve(settings, demo=demo)


def serve(settings: Settings, demo: bool = False) -> None:
    """Wire sink, pollers and (optionally) the demo gauge, then block."""
    from .exposition.demo import ResponseTimeGenerator
    from .exposition.sink import ViolationSink
    from .nelson.registry import SeriesRegistry
    from .query.client import PrometheusClient
    from .query.poller import SeriesPoller, run_pollers

    sink = ViolationSink()
    try:
        sink.start(settings.endpoint, settings.metrics_path)
    except OSError as exc:
        _fail(f"cannot bind {settings.endpoint}: {exc}")
        return

    generator = None
    if demo:
        generator = ResponseTimeGenerator(sink.registry)
        generator.start()

    client = PrometheusClient(settings.server, timeout=settings.query_timeout)
    registry = SeriesRegistry()
    selected = resolve_rules(settings.rules)
    pollers = [
        SeriesPoller(
            expression,
            client,
            registry,
            sink,
            sample_size=settings.sample_size,
            rules=selected,
            interval=settings.interval,
            offset=settings.offset,
            retries=settings.query_retries,
            retry_backoff=settings.retry_backoff,
        )
        for expression in settings.expressions
    ]

    stop = threading.Event()
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda *_: stop.set())

    try:
        run_pollers(pollers, stop)
    except KeyboardInterrupt:
        stop.set()
        err_console.print("\n[dim]Stopped.[/dim]")
    except OutlierError as exc:
        _fail(str(exc))
    finally:
        if generator is not None:
            generator.stop()
        sink.stop()
        client.close()


# ── rules ────────────────────────────────────────────────────────────────────


@main.command(name="rules")
@click.option(
    "--preset", "-p", default="common", show_default=True,
    help="Preset (all|common) or comma-separated rule names to mark as active.",
)
def rules_cmd(preset: str) -> None:
    """Show the Nelson rule catalog.

    \b
    Examples:
      outlier rules
      outlier rules --preset all
      outlier rules --preset Rule1,Rule5
    """
    from .visualization.tables import print_rules_table

    try:
        active = resolve_rules(preset)
    except ConfigurationError as exc:
        _fail(str(exc))
        return
    print_rules_table(ALL_RULES, active=active, title=f"Nelson rules (active: {preset})")


# ── evaluate ─────────────────────────────────────────────────────────────────


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sample-size", "-s", default=50, type=int, show_default=True, help="Baseline size.")
@click.option("--rules", "-r", "rule_selection", default="common", show_default=True, help="Rule preset or names.")
@click.option(
    "--format", "-f", "fmt", default="auto",
    type=click.Choice(["auto", "csv", "json"], case_sensitive=False),
    help="Input format (default: auto-detect per line).",
    show_default=True,
)
@click.option(
    "--output", "-o", "output_fmt", default="table",
    type=click.Choice(["table", "json"], case_sensitive=False),
    help="Output format.",
    show_default=True,
)
@click.option("--no-sort", is_flag=True, help="Feed samples in file order instead of by time.")
def evaluate(
    file: Path,
    sample_size: int,
    rule_selection: str,
    fmt: str,
    output_fmt: str,
    no_sort: bool,
) -> None:
    """Evaluate one series offline from a file of samples.

    Each line is either ``timestamp,value`` (CSV, optional header) or a JSON
    object with ``timestamp`` and ``value``. Timestamps are unix seconds or
    ISO-8601.

    \b
    Examples:
      outlier evaluate latency.csv --sample-size 20
      outlier evaluate export.jsonl --rules all --output json
    """
    from .visualization.tables import print_baseline, print_tally_table, print_violations_table

    if sample_size <= 0:
        _fail("sample size must be > 0")
        return
    try:
        selected = resolve_rules(rule_selection)
    except ConfigurationError as exc:
        _fail(str(exc))
        return

    samples = list(_read_samples(file, fmt.lower()))
    evaluator = SeriesEvaluator({"__name__": file.stem}, sample_size, selected, key=file.stem)
    if no_sort:
        violations = []
        for sample in samples:
            violations.extend(evaluator.add_sample(sample).violations)
    else:
        violations = evaluator.add_samples(samples)

    if output_fmt == "json":
        click.echo(json.dumps({
            "series": evaluator.key,
            "samples": len(samples),
            "baseline": {
                "ready": evaluator.baseline.ready,
                "mean": evaluator.baseline.mean,
                "standard_deviation": evaluator.baseline.standard_deviation,
                "sample_size": evaluator.baseline.sample_size,
            },
            "violations": [
                {"rule": v.rule, "timestamp": v.sample.timestamp, "value": v.sample.value}
                for v in violations
            ],
            "tally": dict(evaluator.violations),
        }))
        return

    console.print(f"\n[bold]File:[/bold] {file.name}  [bold]Samples:[/bold] {len(samples)}")
    print_baseline(evaluator.baseline, label=evaluator.key)
    print_violations_table(violations, title=f"Violations in {file.name}")
    if evaluator.ready:
        print_tally_table(evaluator.violations, selected)


if __name__ == "__main__":
    main()
