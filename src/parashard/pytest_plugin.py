"""Worker-side result reporter for pytest.

Load it in each worker with ``-p parashard.pytest_plugin`` and point it at
the reporter configuration the coordinator wrote::

    pytest -p parashard.pytest_plugin --parashard-reporter-config=cfg.json tests/a.py

It writes one ``ResultRecord`` per test file once every collected test of
that file has run (whatever order the tests run in), then a completion
marker when the session ends normally.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from parashard.sharding.models import ResultRecord
from parashard.sharding.protocol import ResultStreamWriter
from parashard.sharding.reporter_config import STREAM_REPORTER, read_reporter_options

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)

_DEFAULT_REPORT_DIR = "runner-results"
_DEFAULT_WORKER_ENV_VAR = "PARASHARD_WORKER"


@dataclass
class _FileStats:
    passes: int = 0
    failures: int = 0
    pending: int = 0
    duration_s: float = 0.0
    flushed: bool = False


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("parashard", "parashard result reporting")
    group.addoption(
        "--parashard-reporter-config",
        dest="parashard_reporter_config",
        default=None,
        help="Reporter configuration file written by the parashard coordinator.",
    )
    group.addoption(
        "--parashard-worker-env",
        dest="parashard_worker_env",
        default=_DEFAULT_WORKER_ENV_VAR,
        help="Environment variable holding this worker's index.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config_path = config.getoption("parashard_reporter_config")
    if not config_path:
        return
    options = read_reporter_options(Path(config_path), STREAM_REPORTER)
    report_dir = Path(str(options.get("reportDir", _DEFAULT_REPORT_DIR)))
    worker_raw = os.environ.get(config.getoption("parashard_worker_env"), "")
    try:
        worker_index = int(worker_raw)
    except ValueError as exc:
        msg = f"parashard worker index is not set or invalid: {worker_raw!r}"
        raise pytest.UsageError(msg) from exc
    config.pluginmanager.register(
        StreamReporter(config, report_dir, worker_index), "parashard-stream-reporter"
    )


class StreamReporter:
    """Collects per-file outcomes and streams them to the results area."""

    def __init__(self, config: pytest.Config, report_dir: Path, worker_index: int) -> None:
        self.config = config
        base = config.invocation_params.dir
        self.writer = ResultStreamWriter(
            report_dir if report_dir.is_absolute() else base / report_dir,
            worker_index,
        )
        self._stats: dict[str, _FileStats] = {}
        self._identities: dict[Path, str] = {}
        for arg in config.args:
            identity = arg.split("::", 1)[0]
            path = base / identity
            if not path.is_file():
                continue
            self._identities[path.resolve()] = identity
            self._stats.setdefault(identity, _FileStats())
        self._current: str | None = None
        # Tests still to run per file; a file is flushed when it reaches zero.
        self._remaining: Counter[str] = Counter()

    def _identity_for(self, path: Path) -> str:
        resolved = path.resolve()
        identity = self._identities.get(resolved)
        if identity is None:
            identity = os.path.relpath(resolved, self.config.invocation_params.dir)
            identity = identity.replace(os.sep, "/")
            self._identities[resolved] = identity
        return identity

    def _stats_for(self, identity: str) -> _FileStats:
        return self._stats.setdefault(identity, _FileStats())

    def _flush(self, identity: str) -> None:
        stats = self._stats_for(identity)
        if stats.flushed:
            return
        self.writer.write(
            ResultRecord(
                file=identity,
                passes=stats.passes,
                failures=stats.failures,
                pending=stats.pending,
                duration=round(stats.duration_s * 1000, 3),
            )
        )
        stats.flushed = True

    def pytest_collection_finish(self, session: pytest.Session) -> None:
        for item in session.items:
            self._remaining[self._identity_for(item.path)] += 1

    @pytest.hookimpl(wrapper=True)
    def pytest_runtest_protocol(self, item: pytest.Item) -> Generator[None, Any, Any]:
        identity = self._identity_for(item.path)
        self._current = identity
        try:
            return (yield)
        finally:
            self._remaining[identity] -= 1
            if self._remaining[identity] <= 0:
                self._flush(identity)
            self._current = None

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        if self._current is None:
            return
        stats = self._stats_for(self._current)
        stats.duration_s += report.duration
        if report.when == "call":
            if report.passed:
                stats.passes += 1
            elif report.failed:
                stats.failures += 1
            else:
                stats.pending += 1
        elif report.when == "setup":
            if report.failed:
                stats.failures += 1
            elif report.skipped:
                stats.pending += 1
        elif report.failed:
            stats.failures += 1

    def pytest_collectreport(self, report: pytest.CollectReport) -> None:
        if not report.failed:
            return
        path = report.nodeid.split("::", 1)[0]
        if not path:
            return
        identity = self._identity_for(self.config.rootpath / path)
        self._stats_for(identity).failures += 1

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        for identity in list(self._stats):
            self._flush(identity)
        if exitstatus == pytest.ExitCode.INTERRUPTED:
            logger.warning("Session interrupted, not writing the completion marker")
            return
        self.writer.complete()
