"""Durable result protocol between workers and the coordinator.

Each worker owns a disjoint set of names inside the shared results area:

- ``worker-<n>.jsonl``: append-only stream, one JSON ``ResultRecord`` per
  line, flushed and fsynced after every line. A line cut short by a
  crash is simply ignored by readers.
- ``worker-<n>-<token>.jsonl``: continuation segment opened when an append
  to the current segment fails. The previous segment is never written
  again, so a half-written line cannot be glued to a later one.
- ``worker-<n>.done``: completion marker, written atomically only after
  every record is durable. It separates "worker had nothing to report"
  from "worker died before reporting".

Reporters that prefer one file per item may instead drop ``<name>.json``
files holding a single record, written with temp-file + rename; readers
accept both shapes.
"""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from parashard.retry import RetryConfig, retry_call
from parashard.sharding.models import CompletionMarker, ResultRecord
from parashard.utils.atomic import atomic_write_text

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

logger = logging.getLogger(__name__)

STREAM_SUFFIX = ".jsonl"
MARKER_SUFFIX = ".done"
RECORD_SUFFIX = ".json"
_TEMP_SUFFIX = ".tmp"

_WORKER_FILE_RE = re.compile(r"^worker-(?P<index>\d+)(?:-(?P<token>[0-9a-f]+))?\.(?:jsonl|done)$")


def stream_name(worker_index: int, token: str | None = None) -> str:
    """Return the stream file name for *worker_index*."""
    if token:
        return f"worker-{worker_index}-{token}{STREAM_SUFFIX}"
    return f"worker-{worker_index}{STREAM_SUFFIX}"


def marker_name(worker_index: int) -> str:
    """Return the completion marker file name for *worker_index*."""
    return f"worker-{worker_index}{MARKER_SUFFIX}"


def parse_worker_index(file_name: str) -> int | None:
    """Extract the worker index from a stream or marker file name."""
    match = _WORKER_FILE_RE.match(file_name)
    return int(match.group("index")) if match else None


def is_protocol_file(file_name: str) -> bool:
    """True for names a worker or reporter may leave in the results area."""
    if file_name.startswith(".") and file_name.endswith(_TEMP_SUFFIX):
        return True
    return file_name.endswith((STREAM_SUFFIX, MARKER_SUFFIX, RECORD_SUFFIX))


class ResultStreamWriter:
    """Worker-side writer for one worker's records and completion marker.

    Use as a context manager: the marker is written on clean exit only,
    so a crash inside the block leaves the worker visibly incomplete.
    """

    def __init__(
        self,
        results_dir: Path,
        worker_index: int,
        *,
        retry: RetryConfig | None = None,
    ) -> None:
        if worker_index < 1:
            msg = f"worker index must be >= 1, got {worker_index}"
            raise ValueError(msg)
        self.results_dir = results_dir
        self.worker_index = worker_index
        self.retry = retry or RetryConfig()
        self.records_written = 0
        self._segment = results_dir / stream_name(worker_index)
        self._completed = False

    @property
    def segment(self) -> Path:
        """The stream segment currently being appended to."""
        return self._segment

    def _ensure_dir(self) -> None:
        # Several workers may race to create the directory.
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def _append(self, line: str, attempt: int) -> None:
        if attempt > 0:
            self._segment = self.results_dir / stream_name(
                self.worker_index, uuid.uuid4().hex[:8]
            )
            logger.debug("Switching worker %d to segment %s", self.worker_index, self._segment)
        self._ensure_dir()
        with self._segment.open("a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()
            os.fsync(fh.fileno())

    def write(self, record: ResultRecord) -> None:
        """Durably append *record* to this worker's stream.

        Raises:
            RuntimeError: If the completion marker was already written.
            OSError: If every retry attempt failed.
        """
        if self._completed:
            msg = f"Worker {self.worker_index} already wrote its completion marker"
            raise RuntimeError(msg)
        if record.worker is None:
            record.worker = self.worker_index
        line = json.dumps(record.to_dict(), separators=(",", ":")) + "\n"
        retry_call(
            lambda attempt: self._append(line, attempt),
            self.retry,
            description=f"Appending result for {record.file}",
        )
        self.records_written += 1

    def complete(self) -> CompletionMarker:
        """Write the completion marker after all records are durable."""
        if self._completed:
            msg = f"Worker {self.worker_index} already wrote its completion marker"
            raise RuntimeError(msg)
        marker = CompletionMarker(worker=self.worker_index, records=self.records_written)
        self._ensure_dir()
        retry_call(
            lambda attempt: atomic_write_text(
                self.results_dir / marker_name(self.worker_index),
                json.dumps(marker.to_dict()),
            ),
            self.retry,
            description=f"Writing completion marker for worker {self.worker_index}",
        )
        self._completed = True
        return marker

    def __enter__(self) -> ResultStreamWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None and not self._completed:
            self.complete()


@dataclass
class StreamContents:
    """Records parsed from one stream segment."""

    records: list[ResultRecord] = field(default_factory=list)
    malformed: int = 0
    partial_tail: bool = False
    """True when the final line was cut short and ignored."""


def _loads_object(text: str) -> dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def read_stream(path: Path) -> StreamContents:
    """Parse every complete line of a stream segment.

    Raises:
        OSError: If the file cannot be read.
    """
    contents = StreamContents()
    text = path.read_text(encoding="utf-8", errors="replace")
    lines = text.split("\n")
    # ``split`` leaves an empty last element when the file ends with "\n";
    # anything else there is a line whose write never finished.
    tail = lines.pop()
    if tail.strip():
        contents.partial_tail = True
        logger.debug("Ignoring unterminated final line in %s", path)

    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            contents.records.append(ResultRecord.from_dict(_loads_object(line)))
        except ValueError as exc:
            contents.malformed += 1
            logger.warning("Skipping malformed record at %s:%d: %s", path.name, number, exc)
    return contents


def read_record_file(path: Path) -> ResultRecord:
    """Parse a single-record ``.json`` file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it does not hold a valid record.
    """
    return ResultRecord.from_dict(_loads_object(path.read_text(encoding="utf-8")))


def read_marker(path: Path) -> CompletionMarker:
    """Parse a completion marker file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it is not a valid marker.
    """
    try:
        return CompletionMarker.from_dict(_loads_object(path.read_text(encoding="utf-8")))
    except (KeyError, TypeError) as exc:
        raise ValueError(f"malformed completion marker {path.name}: {exc}") from exc
