"""parashard CLI: top-level command group."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler

from parashard import __version__
from parashard.config import ParashardConfig, load_config, validate_config
from parashard.discovery import collect_work_items
from parashard.errors import BailError, ParashardError, ResultCountMismatchError
from parashard.reporters.json_reporter import JSONReporter
from parashard.reporters.terminal import reporter
from parashard.sharding.coordinator import Coordinator, RunSummary
from parashard.sharding.weights import WeightStore

logger = logging.getLogger(__name__)

_STDERR = Console(stderr=True)


def _configure_logging(*, verbose: bool) -> None:
    """Route library logging through rich on stderr."""
    handler = RichHandler(console=_STDERR, show_path=False, show_time=verbose)
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _apply_run_overrides(config: ParashardConfig, kwargs: dict[str, Any]) -> None:
    """Let command-line options win over ``.parashard.yml`` values."""
    execution = config.execution
    if kwargs.get("workers") is not None:
        execution.workers = kwargs["workers"]
    if kwargs.get("bail"):
        execution.bail = True
    if kwargs.get("command"):
        execution.command = shlex.split(kwargs["command"])
    if kwargs.get("files_separator") is not None:
        execution.files_separator = kwargs["files_separator"]
    extra = shlex.split(kwargs["args"]) if kwargs.get("args") else []
    extra.extend(kwargs.get("extra_args") or ())
    if extra:
        execution.extra_args = [*execution.extra_args, *extra]
    if kwargs.get("worker_timeout") is not None:
        execution.worker_timeout = kwargs["worker_timeout"]
    if kwargs.get("verbose"):
        execution.verbose = True

    if kwargs.get("specs"):
        config.discovery.specs = list(kwargs["specs"])
    if kwargs.get("specs_dir"):
        config.discovery.pattern = kwargs["specs_dir"]

    if kwargs.get("strict") is not None:
        config.results.strict = kwargs["strict"]
    if kwargs.get("results_dir"):
        config.results.dir = kwargs["results_dir"]

    for name in kwargs.get("reporters") or ():
        if name not in config.reporters.enabled:
            config.reporters.enabled.append(name)
    if kwargs.get("reporter_options_path"):
        config.reporters.options_path = kwargs["reporter_options_path"]

    if kwargs.get("weights_json"):
        config.weights.path = kwargs["weights_json"]


def _load_run_config(path: str, config_file: str | None) -> ParashardConfig:
    try:
        return load_config(path, config_file)
    except ParashardError as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise SystemExit(e.exit_code) from e


def _display_summary(summary: RunSummary, *, ci_mode: bool) -> None:
    if ci_mode:
        click.echo(JSONReporter().generate_string(summary))
        return
    reporter.print_plan(summary.partitions)
    reporter.print_statistics(summary.aggregate)
    reporter.print_worker_outcomes(summary.outcomes)
    reporter.print_summary(summary)


@click.group()
@click.option(
    "--ci",
    is_flag=True,
    help="CI mode: machine-readable JSON output instead of tables.",
)
@click.option("--verbose", "-v", is_flag=True, help="Execute with verbose logging.")
@click.version_option(version=__version__, prog_name="parashard")
@click.pass_context
def cli(ctx: click.Context, *, ci: bool, verbose: bool) -> None:
    """parashard: run test files in parallel, balanced by learned weights."""
    ctx.ensure_object(dict)
    ctx.obj["ci"] = ci
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose=verbose)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Configuration file (default: .parashard.yml in the project root).",
)
@click.option("--workers", "-t", type=int, default=None, help="Number of worker processes.")
@click.option("--bail", "-b", is_flag=True, help="Exit on first worker finishing with errors.")
@click.option("--specs-dir", "-d", default=None, help="Glob pattern or directory of test files.")
@click.option("--spec", "specs", multiple=True, help="Explicit test file (repeatable).")
@click.option("--command", "-s", default=None, help="Worker command template (shell syntax).")
@click.option(
    "--files-separator",
    default=None,
    help="Join the partition into one {files} argument with this separator.",
)
@click.option("--args", "-a", default=None, help="Extra arguments for every worker command.")
@click.option("--reporter", "-r", "reporters", multiple=True, help="Additional reporter to enable.")
@click.option(
    "--reporter-options-path",
    "-p",
    default=None,
    help="JSON file merged into the generated reporter configuration.",
)
@click.option(
    "--strict/--no-strict",
    "-m",
    default=None,
    help="Fail when results do not cover every discovered file.",
)
@click.option("--results-dir", "-x", default=None, help="Shared results directory.")
@click.option("--weights-json", "-w", default=None, help="Learned weights file.")
@click.option("--verbose", "-v", is_flag=True, help="Execute with verbose logging.")
@click.option(
    "--worker-timeout",
    type=float,
    default=None,
    help="Seconds before a worker is killed (0 = no limit).",
)
@click.option(
    "--report-json",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the aggregate report to this JSON file.",
)
@click.argument("extra_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx: click.Context, **kwargs: Any) -> None:
    """Run discovered test files across parallel workers.

    Files are weighted by the time they took last run (or their line count
    when unknown), balanced across workers, and their results merged into a
    single report. Arguments after ``--`` are passed to every worker.
    """
    ci_mode = bool(ctx.obj.get("ci")) if ctx.obj else False
    if kwargs.get("verbose"):
        _configure_logging(verbose=True)
    else:
        kwargs["verbose"] = bool(ctx.obj.get("verbose")) if ctx.obj else False

    config = _load_run_config(kwargs["path"], kwargs.get("config_file"))
    _apply_run_overrides(config, kwargs)

    errors = validate_config(config)
    if errors:
        for error in errors:
            reporter.print_error(error)
        raise SystemExit(1)

    if ci_mode:
        config.execution.redirect_stdout = True
    else:
        reporter.print_header("parashard run")

    identities = collect_work_items(Path(config.root), config.discovery)
    if not ci_mode:
        reporter.print_info(f"{len(identities)} test suite(s) found.")

    coordinator = Coordinator(config)
    try:
        summary = asyncio.run(coordinator.run(identities))
    except BailError as e:
        reporter.print_error(str(e))
        raise SystemExit(e.exit_code) from e
    except ResultCountMismatchError as e:
        reporter.print_error(str(e))
        if e.missing:
            reporter.print_info(
                "Missing results for the following test suites: " + ", ".join(e.missing)
            )
        raise SystemExit(e.exit_code) from e
    except ParashardError as e:
        reporter.print_error(str(e))
        raise SystemExit(e.exit_code) from e

    _display_summary(summary, ci_mode=ci_mode)

    if kwargs.get("report_json"):
        JSONReporter().generate(Path(kwargs["report_json"]), summary)

    if not summary.success:
        if not ci_mode:
            failures = summary.aggregate.totals.failures
            if failures:
                reporter.print_error(f"{failures} test failure(s)")
            for worker in summary.failed_workers:
                reporter.print_error(f"Worker {worker} exited with errors")
        raise SystemExit(summary.exit_code)

    if not ci_mode:
        reporter.print_success("All tests passed!")


@cli.group("weights")
def weights_group() -> None:
    """Inspect learned per-file weights."""


@weights_group.command("show")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option("--config", "config_file", type=click.Path(dir_okay=False), default=None)
@click.option("--weights-json", "-w", default=None, help="Learned weights file.")
@click.option("--json-output", "as_json", is_flag=True, help="Output raw JSON instead of a table.")
def weights_show(
    path: str, config_file: str | None, weights_json: str | None, *, as_json: bool
) -> None:
    """Show the weights learned from previous runs."""
    config = _load_run_config(path, config_file)
    if weights_json:
        config.weights.path = weights_json

    table = WeightStore(config.weights_path, root=Path(config.root)).load()
    if as_json:
        click.echo(json.dumps(table.to_dict(), indent=2))
        return
    if not table.entries:
        reporter.print_info(f"No learned weights in {config.weights_path}")
        return
    reporter.print_weights(table)


if __name__ == "__main__":
    cli()
