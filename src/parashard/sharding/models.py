"""Data models shared by the scheduler, the supervisors and the collector."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class WorkItem:
    """One test file and its cost estimate for this run."""

    identity: str
    """Stable key (the file path as discovered)."""

    weight: float = 0.0
    """Non-negative cost estimate in arbitrary units (larger = costlier)."""

    order: int = 0
    """Position in discovery order, used to break weight ties."""


@dataclass
class Partition:
    """Ordered list of work items assigned to one worker."""

    items: list[str] = field(default_factory=list)
    """Item identities in assignment order."""

    total_weight: float = 0.0
    """Sum of the weights of ``items``."""

    def add(self, item: WorkItem) -> None:
        """Append *item* and account for its weight."""
        self.items.append(item.identity)
        self.total_weight += item.weight

    def __len__(self) -> int:
        return len(self.items)


class WorkerStatus(Enum):
    """Lifecycle state of a worker process."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class WorkerHandle:
    """A spawned worker process as seen by its supervisor."""

    worker_index: int
    """One-based worker index, also the namespace of its result files."""

    status: WorkerStatus = WorkerStatus.PENDING
    exit_code: int | None = None
    cancelled: bool = False
    """Set when the coordinator terminated the worker (bail mode)."""

    def settle(self, exit_code: int) -> None:
        """Record the process exit; a handle settles exactly once.

        Raises:
            RuntimeError: If the handle already reached a terminal state.
        """
        if self.status is not WorkerStatus.PENDING:
            msg = f"Worker {self.worker_index} already settled with code {self.exit_code}"
            raise RuntimeError(msg)
        self.exit_code = exit_code
        self.status = WorkerStatus.SUCCESS if exit_code == 0 else WorkerStatus.FAILURE

    @property
    def settled(self) -> bool:
        """True once the process exit has been recorded."""
        return self.status is not WorkerStatus.PENDING


@dataclass
class ExecutionOutcome:
    """What the coordinator learns from one worker: its exit and timing."""

    worker_index: int
    exit_code: int
    duration_ms: float = 0.0
    item_count: int = 0
    timed_out: bool = False
    cancelled: bool = False
    error: str | None = None
    """Why the worker could not be started, when it never ran."""

    @property
    def success(self) -> bool:
        """True when the worker exited with code 0."""
        return self.exit_code == 0 and not self.timed_out


def utc_timestamp() -> str:
    """Return the current time as an ISO 8601 UTC string."""
    return datetime.now(UTC).isoformat()


@dataclass
class ResultRecord:
    """Outcome of one work item, written by a worker."""

    file: str
    passes: int = 0
    failures: int = 0
    pending: int = 0
    duration: float = 0.0
    """Duration in milliseconds."""

    timestamp: str = field(default_factory=utc_timestamp)
    """Completion time, ISO 8601."""

    worker: int | None = None
    """Index of the worker that produced the record, when known."""

    @property
    def tests(self) -> int:
        """Number of sub-tests counted in this record."""
        return self.passes + self.failures + self.pending

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk record shape."""
        data: dict[str, Any] = {
            "file": self.file,
            "passes": self.passes,
            "failures": self.failures,
            "pending": self.pending,
            "duration": self.duration,
            "timestamp": self.timestamp,
        }
        if self.worker is not None:
            data["worker"] = self.worker
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResultRecord:
        """Build a record from its on-disk shape.

        Raises:
            ValueError: If required fields are missing or mistyped.
        """
        file = data.get("file")
        if not isinstance(file, str) or not file:
            raise ValueError("result record has no 'file' identity")
        worker_raw = data.get("worker")
        try:
            return cls(
                file=file,
                passes=int(data.get("passes", 0)),
                failures=int(data.get("failures", 0)),
                pending=int(data.get("pending", 0)),
                duration=float(data.get("duration", 0.0)),
                timestamp=str(data.get("timestamp", "")),
                worker=int(worker_raw) if worker_raw is not None else None,
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"malformed result record for {file}: {exc}") from exc


@dataclass
class CompletionMarker:
    """Written by a worker after all of its records are durable."""

    worker: int
    records: int
    """Number of records the worker wrote before the marker."""

    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk marker shape."""
        return {"worker": self.worker, "records": self.records, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompletionMarker:
        """Build a marker from its on-disk shape."""
        return cls(
            worker=int(data["worker"]),
            records=int(data.get("records", 0)),
            timestamp=str(data.get("timestamp", "")),
        )


@dataclass
class Totals:
    """Summed counts across all records of a run."""

    tests: int = 0
    passes: int = 0
    failures: int = 0
    pending: int = 0
    duration: float = 0.0


@dataclass
class AggregateResult:
    """Merged per-item results of a run, plus the anomalies found while merging."""

    records: dict[str, ResultRecord] = field(default_factory=dict)
    """At most one record per item identity."""

    duplicates: list[str] = field(default_factory=list)
    """Identities seen more than once (last write wins)."""

    missing_markers: list[int] = field(default_factory=list)
    """Workers that produced records but never wrote a completion marker."""

    silent_workers: list[int] = field(default_factory=list)
    """Expected workers with neither records nor a completion marker."""

    incomplete_workers: list[int] = field(default_factory=list)
    """Workers whose marker announces more records than were readable."""

    malformed: int = 0
    """Lines or files that could not be parsed and were skipped."""

    warnings: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def totals(self) -> Totals:
        """Sum counts and durations over every record."""
        totals = Totals()
        for record in self.records.values():
            totals.tests += record.tests
            totals.passes += record.passes
            totals.failures += record.failures
            totals.pending += record.pending
            totals.duration += record.duration
        return totals

    @property
    def failed_items(self) -> list[str]:
        """Identities whose record reports at least one failure."""
        return [name for name, record in self.records.items() if record.failures > 0]

    def missing(self, expected: list[str]) -> list[str]:
        """Return identities from *expected* that have no record."""
        return [identity for identity in expected if identity not in self.records]
