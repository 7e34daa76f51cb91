"""Rich-powered tables for the rule catalog and evaluation reports."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping

from rich import box
from rich.console import Console
from rich.table import Table

from ..nelson.baseline import Baseline
from ..nelson.rules import Rule
from ..nelson.series import Violation

_console = Console()


def _format_ts(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def print_rules_table(rules: Iterable[Rule], active: Iterable[Rule] = (), title: str = "Nelson rules") -> None:
    """Render the rule catalog, marking the rules in ``active``."""
    active_names = {r.name for r in active}
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Rule", style="bold")
    table.add_column("Active", justify="center")
    table.add_column("Description", overflow="fold")

    for rule in rules:
        mark = "[green]✓[/green]" if rule.name in active_names else "[dim]-[/dim]"
        table.add_row(rule.name, mark, rule.description)

    _console.print(table)


def print_baseline(baseline: Baseline, label: str = "") -> None:
    """One-line baseline summary (or progress while it is still collecting)."""
    prefix = f"[bold]{label}[/bold] " if label else ""
    if not baseline.ready:
        _console.print(
            f"{prefix}[yellow]baseline not ready[/yellow] "
            f"({baseline.count}/{baseline.sample_size} samples)"
        )
        return
    _console.print(
        f"{prefix}mean=[cyan]{baseline.mean:.5f}[/cyan] "
        f"σ=[cyan]{baseline.standard_deviation:.5f}[/cyan] "
        f"[dim](from {baseline.sample_size} samples)[/dim]"
    )


def print_violations_table(
    violations: list[Violation],
    title: str = "Violations",
    max_rows: int = 100,
) -> None:
    """Render violation events, oldest first."""
    if not violations:
        _console.print("[green]No violations.[/green]")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Time (UTC)", style="dim")
    table.add_column("Value", justify="right", style="cyan")
    table.add_column("Rule", style="red")

    for violation in violations[:max_rows]:
        table.add_row(
            _format_ts(violation.sample.timestamp),
            f"{violation.sample.value:g}",
            violation.rule,
        )

    _console.print(table)
    if len(violations) > max_rows:
        _console.print(f"[dim]... and {len(violations) - max_rows} more violations[/dim]")


def print_tally_table(tally: Mapping[str, int], rules: Iterable[Rule], title: str = "Violations by rule") -> None:
    """Render cumulative per-rule counts (zero rows included)."""
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    table.add_column("Rule")
    table.add_column("Count", justify="right", style="cyan")
    for rule in rules:
        count = tally.get(rule.name, 0)
        style = "red" if count else ""
        table.add_row(rule.name, str(count), style=style)
    _console.print(table)
