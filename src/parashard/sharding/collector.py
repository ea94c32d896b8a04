"""Fan-in of worker results from the shared results area."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from parashard.errors import ResultCountMismatchError
from parashard.sharding.models import AggregateResult, CompletionMarker, ResultRecord
from parashard.sharding.protocol import (
    MARKER_SUFFIX,
    RECORD_SUFFIX,
    STREAM_SUFFIX,
    is_protocol_file,
    parse_worker_index,
    read_marker,
    read_record_file,
    read_stream,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)


def _remove_protocol_files(results_dir: Path) -> list[Path]:
    """Delete result files from *results_dir* and return the entries left alone."""
    kept: list[Path] = []
    for entry in results_dir.iterdir():
        if entry.is_dir() or not is_protocol_file(entry.name):
            kept.append(entry)
            continue
        try:
            entry.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Error cleaning results path entry %s: %s", entry, exc)
    return kept


def prepare_results_dir(results_dir: Path) -> None:
    """Create *results_dir* or empty it of records left by an earlier run.

    Only result files are removed; anything else found there is kept.
    """
    if not results_dir.exists():
        results_dir.mkdir(parents=True, exist_ok=True)
        return
    kept = _remove_protocol_files(results_dir)
    if kept:
        logger.warning(
            "Results directory %s holds %d unrelated entries; leaving them in place",
            results_dir,
            len(kept),
        )


_UNKNOWN_TIME = (0, datetime.min.replace(tzinfo=UTC))


def _completion_key(timestamp: str) -> tuple[int, datetime]:
    """Sort key for a record timestamp; unparseable ones rank as oldest."""
    try:
        moment = datetime.fromisoformat(timestamp)
    except ValueError:
        return _UNKNOWN_TIME
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return (1, moment)


class ResultCollector:
    """Reads every record and marker from *results_dir* into an ``AggregateResult``."""

    def __init__(self, results_dir: Path, *, cleanup: bool = True) -> None:
        """Initialize the collector.

        Args:
            results_dir: The shared results area written by the workers.
            cleanup: Delete the area once everything has been read.
        """
        self.results_dir = results_dir
        self.cleanup = cleanup

    async def collect(self, expected_workers: int) -> AggregateResult:
        """Merge all results, flagging missing or inconsistent workers.

        Never raises for missing data: a flaky worker is reported through
        ``AggregateResult.warnings`` while the other workers' records are
        still returned.
        """
        aggregate = AggregateResult()
        if not self.results_dir.is_dir():
            self._warn(aggregate, f"Results directory {self.results_dir} does not exist")
            aggregate.silent_workers = list(range(1, expected_workers + 1))
            for index in aggregate.silent_workers:
                self._warn(aggregate, f"Worker {index} wrote no results and no completion marker")
            return aggregate

        entries = sorted(p for p in self.results_dir.iterdir() if p.is_file())
        streams = [p for p in entries if p.suffix == STREAM_SUFFIX]
        singles = [p for p in entries if p.suffix == RECORD_SUFFIX and not p.name.startswith(".")]
        markers = [p for p in entries if p.suffix == MARKER_SUFFIX]

        stream_results, single_results, marker_results = await asyncio.gather(
            self._read_all(streams, read_stream),
            self._read_all(singles, read_record_file),
            self._read_all(markers, read_marker),
        )

        # (record, worker index or None) from every source.
        collected: list[tuple[ResultRecord, int | None]] = []
        for path, result in zip(streams, stream_results, strict=True):
            if isinstance(result, BaseException):
                aggregate.malformed += 1
                self._warn(aggregate, f"Error reading {path.name}: {result}")
                continue
            aggregate.malformed += result.malformed
            file_worker = parse_worker_index(path.name)
            collected.extend(
                (record, record.worker if record.worker is not None else file_worker)
                for record in result.records
            )
        for path, result in zip(singles, single_results, strict=True):
            if isinstance(result, BaseException):
                aggregate.malformed += 1
                self._warn(aggregate, f"Error reading or parsing file {path.name}: {result}")
                continue
            collected.append((result, result.worker))

        completed: dict[int, CompletionMarker] = {}
        for path, result in zip(markers, marker_results, strict=True):
            if isinstance(result, BaseException):
                self._warn(aggregate, f"Unreadable completion marker {path.name}: {result}")
                continue
            completed[result.worker] = result

        self._merge(aggregate, collected)
        self._check_workers(aggregate, collected, completed, expected_workers)

        if self.cleanup:
            await asyncio.to_thread(self._remove_results_dir)
        return aggregate

    async def _read_all(self, paths: Sequence[Path], reader: Callable[[Path], Any]) -> list[Any]:
        if not paths:
            return []
        return await asyncio.gather(
            *(asyncio.to_thread(reader, path) for path in paths),
            return_exceptions=True,
        )

    def _merge(
        self,
        aggregate: AggregateResult,
        collected: list[tuple[ResultRecord, int | None]],
    ) -> None:
        # Last write wins: order by completion time, then read order.
        ordered = sorted(collected, key=lambda pair: _completion_key(pair[0].timestamp))
        seen: Counter[str] = Counter()
        for record, _worker in ordered:
            seen[record.file] += 1
            aggregate.records[record.file] = record
        for identity, count in seen.items():
            if count > 1:
                aggregate.duplicates.append(identity)
                self._warn(
                    aggregate,
                    f"Duplicate result records ({count}) for {identity}; keeping the latest",
                )

    def _check_workers(
        self,
        aggregate: AggregateResult,
        collected: list[tuple[ResultRecord, int | None]],
        completed: dict[int, CompletionMarker],
        expected_workers: int,
    ) -> None:
        per_worker: Counter[int] = Counter(
            worker for _record, worker in collected if worker is not None
        )
        for worker in sorted(per_worker):
            if worker not in completed:
                aggregate.missing_markers.append(worker)
                self._warn(
                    aggregate,
                    f"Worker {worker} wrote {per_worker[worker]} record(s) "
                    "but no completion marker; its results may be incomplete",
                )

        for worker in range(1, expected_workers + 1):
            if worker not in per_worker and worker not in completed:
                aggregate.silent_workers.append(worker)
                self._warn(
                    aggregate,
                    f"Worker {worker} wrote no results and no completion marker",
                )

        for worker, marker in sorted(completed.items()):
            if marker.records > per_worker.get(worker, 0):
                aggregate.incomplete_workers.append(worker)
                self._warn(
                    aggregate,
                    f"Worker {worker} reported {marker.records} record(s) "
                    f"but only {per_worker.get(worker, 0)} were readable",
                )

    def _remove_results_dir(self) -> None:
        try:
            kept = _remove_protocol_files(self.results_dir)
            if kept:
                logger.warning(
                    "Keeping results directory %s: it holds %d unrelated entries",
                    self.results_dir,
                    len(kept),
                )
                return
            self.results_dir.rmdir()
        except OSError as exc:
            logger.warning("Could not delete results directory %s: %s", self.results_dir, exc)
        else:
            logger.debug("Deleted results directory %s", self.results_dir)

    @staticmethod
    def _warn(aggregate: AggregateResult, message: str) -> None:
        aggregate.warnings.append(message)
        logger.warning(message)


def verify_result_count(
    aggregate: AggregateResult,
    discovered: Sequence[str],
    *,
    strict: bool,
) -> list[str]:
    """Compare collected identities against the discovered items.

    Returns:
        Identities with no record (empty when the counts match).

    Raises:
        ResultCountMismatchError: In strict mode, when the number of
            distinct identities differs from the number discovered.
    """
    missing = aggregate.missing(list(discovered))
    if len(aggregate.records) == len(discovered) and not missing:
        return []
    message = (
        f"Test suites found ({len(discovered)}) do not match results ({len(aggregate.records)})."
    )
    if strict:
        logger.error("%s Missing results: %s", message, ", ".join(missing) or "none")
        raise ResultCountMismatchError(len(discovered), len(aggregate.records), missing)
    logger.warning("%s Missing results: %s", message, ", ".join(missing) or "none")
    return missing
