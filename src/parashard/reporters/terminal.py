"""Terminal reporter with rich output formatting."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parashard.sharding.coordinator import RunSummary
    from parashard.sharding.models import AggregateResult, ExecutionOutcome, Partition
    from parashard.sharding.weights import WeightTable

console = Console()

_PERFECT_RATE = 100.0
_GOOD_RATE = 80.0
_SECONDS_PER_MINUTE = 60
_MAX_PLAN_FILES_DISPLAY = 3


def _pass_rate_color(rate: float) -> str:
    """Return a Rich color name for a given pass-rate percentage."""
    if rate >= _PERFECT_RATE:
        return "green"
    if rate >= _GOOD_RATE:
        return "yellow"
    return "red"


def format_time(duration_ms: float) -> str:
    """Format milliseconds as ``"1m 5s"`` (seconds rounded up)."""
    seconds = math.ceil(max(duration_ms, 0.0) / 1000)
    minutes, sec = divmod(seconds, _SECONDS_PER_MINUTE)
    return f"{minutes}m {sec}s" if minutes else f"{sec}s"


def _colored_count(count: int, color: str) -> str:
    return f"[{color}]{count}[/{color}]" if count > 0 else str(count)


class CLIReporter:
    """Rich terminal output for parallel runs."""

    def __init__(self, output: Console | None = None) -> None:
        """Initialize the CLI reporter."""
        self.console = output or console

    def print_header(self, title: str) -> None:
        """Print a bold header."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(f"[dim]{message}[/dim]")

    def print_plan(self, partitions: Sequence[Partition]) -> None:
        """Print the worker assignment produced by the partitioner."""
        table = Table(title="Worker Plan", title_style="bold cyan")
        table.add_column("Worker", justify="right", style="bold")
        table.add_column("Files", justify="right")
        table.add_column("Weight", justify="right")
        table.add_column("First files")

        for index, part in enumerate(partitions, start=1):
            shown = ", ".join(part.items[:_MAX_PLAN_FILES_DISPLAY])
            if len(part.items) > _MAX_PLAN_FILES_DISPLAY:
                shown += f" (+{len(part.items) - _MAX_PLAN_FILES_DISPLAY} more)"
            table.add_row(str(index), str(len(part)), f"{part.total_weight:g}", shown)

        self.console.print(table)

    def print_statistics(self, aggregate: AggregateResult) -> None:
        """Print per-file statistics with a totals row."""
        table = Table(title="Results", title_style="bold cyan", header_style="blue")
        table.add_column("Spec", style="bold")
        table.add_column("Time", justify="right")
        table.add_column("Tests", justify="right")
        table.add_column("Passing", justify="right")
        table.add_column("Failing", justify="right")
        table.add_column("Pending", justify="right")

        for name, record in aggregate.records.items():
            table.add_row(
                name,
                format_time(record.duration),
                str(record.tests),
                _colored_count(record.passes, "green"),
                _colored_count(record.failures, "red"),
                str(record.pending),
            )

        totals = aggregate.totals
        table.add_section()
        table.add_row(
            "[bold]Results[/bold]",
            format_time(totals.duration),
            str(totals.tests),
            _colored_count(totals.passes, "green"),
            _colored_count(totals.failures, "red"),
            str(totals.pending),
        )
        self.console.print(table)

    def print_worker_outcomes(self, outcomes: Sequence[ExecutionOutcome]) -> None:
        """Print one line per worker with its exit status."""
        for outcome in outcomes:
            label = f"Worker {outcome.worker_index}: {outcome.item_count} file(s)"
            timing = f"[dim]({format_time(outcome.duration_ms)})[/dim]"
            if outcome.success:
                self.console.print(f"  [green]✓[/green] {label} {timing}")
            elif outcome.timed_out:
                self.console.print(f"  [red]✗[/red] {label} timed out {timing}")
            elif outcome.error:
                self.console.print(f"  [red]✗[/red] {label} not started: {outcome.error}")
            else:
                self.console.print(
                    f"  [red]✗[/red] {label} exited with code {outcome.exit_code} {timing}"
                )

    def print_summary(self, summary: RunSummary) -> None:
        """Print pass rate, time saved and any collection anomalies."""
        totals = summary.aggregate.totals
        if totals.tests:
            rate = totals.passes / totals.tests * 100
            color = _pass_rate_color(rate)
            self.console.print(
                f"\n  [bold]{totals.tests}[/bold] tests  "
                f"[bold {color}]{rate:.0f}%[/bold {color}] pass rate"
            )
        else:
            self.console.print("\n  [dim]No tests executed[/dim]")

        if totals.duration > 0:
            saved = summary.time_saved_ms
            self.console.print(
                f"  Total run time: {totals.duration / 1000:.1f}s, "
                f"executed in: {summary.wall_time_ms / 1000:.1f}s, "
                f"saved {saved / 1000:.1f}s (~{round(saved / totals.duration * 100)}%)"
            )

        for warning in summary.aggregate.warnings:
            self.print_warning(warning)
        if summary.missing:
            self.print_warning(
                f"Missing results for {len(summary.missing)} file(s): "
                + ", ".join(summary.missing)
            )

    def print_weights(self, table_data: WeightTable) -> None:
        """Print the learned weight table, heaviest first."""
        table = Table(title="Learned Weights", title_style="bold cyan")
        table.add_column("Spec", style="bold")
        table.add_column("Weight", justify="right")
        table.add_column("Last time", justify="right")

        ordered = sorted(table_data.entries.items(), key=lambda kv: (-kv[1].weight, kv[0]))
        for name, entry in ordered:
            last = format_time(entry.time) if entry.time is not None else "-"
            table.add_row(name, f"{entry.weight:g}", last)

        self.console.print(table)


# Singleton instance for easy import
reporter = CLIReporter()
