"""Shared fixtures for parashard tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from parashard.config import ParashardConfig
from parashard.retry import RetryConfig
from parashard.sharding.models import ResultRecord


# ── File creation helpers ────────────────────────────────────────


def write_file(root: Path, rel: str, content: str) -> Path:
    """Write *content* to a file under *root*."""
    f = root / rel
    f.parent.mkdir(parents=True, exist_ok=True)
    f.write_text(content, encoding="utf-8")
    return f


def write_json(root: Path, rel: str, data: Any) -> Path:
    """Write a JSON file under *root*."""
    return write_file(root, rel, json.dumps(data, indent=2))


def write_stream(results_dir: Path, name: str, records: list[ResultRecord]) -> Path:
    """Write a complete JSONL stream file holding *records*."""
    lines = "".join(json.dumps(r.to_dict()) + "\n" for r in records)
    return write_file(results_dir, name, lines)


def write_marker(results_dir: Path, worker: int, records: int) -> Path:
    """Write a completion marker for *worker*."""
    return write_json(
        results_dir,
        f"worker-{worker}.done",
        {"worker": worker, "records": records, "timestamp": "2026-01-01T00:00:00+00:00"},
    )


def record(
    file: str,
    *,
    passes: int = 1,
    failures: int = 0,
    pending: int = 0,
    duration: float = 10.0,
    timestamp: str = "2026-01-01T00:00:00+00:00",
    worker: int | None = None,
) -> ResultRecord:
    """Build a ``ResultRecord`` with test-friendly defaults."""
    return ResultRecord(
        file=file,
        passes=passes,
        failures=failures,
        pending=pending,
        duration=duration,
        timestamp=timestamp,
        worker=worker,
    )


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def no_retry() -> RetryConfig:
    """A retry policy that never sleeps."""
    return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def config(tmp_path: Path) -> ParashardConfig:
    """A default configuration rooted at ``tmp_path``."""
    return ParashardConfig(root=str(tmp_path))
