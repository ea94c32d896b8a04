"""Learned per-item weights: loading estimates and writing them back.

The weight file maps each item identity to ``{"weight": number}`` and
optionally the last measured ``time`` in milliseconds. It is advisory:
any failure to read or write it degrades to the static line-count
estimate and never fails a run.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from parashard.retry import RetryConfig, retry_call
from parashard.sharding.models import WorkItem
from parashard.sharding.partitioner import DEFAULT_MIN_WEIGHT, normalize_weight
from parashard.utils.atomic import atomic_write_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

_WEIGHT_PRECISION = 3
_DEFAULT_WEIGHT_PER_TEST = 10


@dataclass
class WeightEntry:
    """Learned cost of one item."""

    weight: float
    time: float | None = None
    """Last measured duration in milliseconds."""


@dataclass
class WeightTable:
    """Mapping from item identity to its learned weight."""

    entries: dict[str, WeightEntry] = field(default_factory=dict)

    def get(self, identity: str) -> float | None:
        """Return the learned weight for *identity*, or None when unknown."""
        entry = self.entries.get(identity)
        return entry.weight if entry is not None else None

    def __contains__(self, identity: object) -> bool:
        return identity in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Serialize to the on-disk shape."""
        data: dict[str, dict[str, Any]] = {}
        for identity, entry in sorted(self.entries.items()):
            item: dict[str, Any] = {"weight": entry.weight}
            if entry.time is not None:
                item["time"] = entry.time
            data[identity] = item
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WeightTable:
        """Parse the on-disk shape, skipping entries without a usable weight."""
        entries: dict[str, WeightEntry] = {}
        for identity, raw in data.items():
            if not isinstance(raw, dict):
                logger.debug("Ignoring weight entry %s: not an object", identity)
                continue
            weight = raw.get("weight")
            if isinstance(weight, bool) or not isinstance(weight, int | float):
                continue
            if not math.isfinite(weight) or weight < 0:
                logger.debug("Ignoring weight entry %s: invalid weight %r", identity, weight)
                continue
            time_raw = raw.get("time")
            time_ms = float(time_raw) if isinstance(time_raw, int | float) else None
            entries[str(identity)] = WeightEntry(weight=float(weight), time=time_ms)
        return cls(entries=entries)


def count_lines(path: Path) -> int:
    """Return the line count of *path* (newlines + 1).

    Raises:
        OSError: If the file cannot be read.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    return text.count("\n") + 1


class WeightStore:
    """Loads prior-run weights and turns discovered paths into work items."""

    def __init__(
        self,
        path: Path,
        *,
        root: Path | None = None,
        default_weight: float = DEFAULT_MIN_WEIGHT,
    ) -> None:
        """Initialize the store.

        Args:
            path: Location of the weight file.
            root: Directory that relative item identities are resolved against.
            default_weight: Estimate used when a file cannot be read.
        """
        self.path = path
        self.root = root or Path.cwd()
        self.default_weight = default_weight

    def load(self) -> WeightTable:
        """Read the weight file, returning an empty table on any failure."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning("Weight file not found: %s. Using line count as weight.", self.path)
            return WeightTable()
        except (OSError, ValueError) as exc:
            logger.warning(
                "Weight file %s is unreadable (%s). Using line count as weight.", self.path, exc
            )
            return WeightTable()
        if not isinstance(raw, dict):
            logger.warning("Weight file %s is not a JSON object, ignoring it", self.path)
            return WeightTable()
        table = WeightTable.from_dict(raw)
        logger.debug("Loaded %d weight(s) from %s", len(table), self.path)
        return table

    def static_estimate(self, identity: str) -> float:
        """Estimate cost from the file's line count."""
        path = Path(identity)
        if not path.is_absolute():
            path = self.root / path
        try:
            return float(count_lines(path))
        except OSError as exc:
            logger.warning("Cannot read %s for a weight estimate: %s", identity, exc)
            return self.default_weight

    def build_items(
        self,
        identities: Sequence[str],
        table: WeightTable | None = None,
    ) -> list[WorkItem]:
        """Pair each identity with its learned weight or static estimate.

        A missing or zero learned weight falls back to the static estimate.
        """
        weights = table if table is not None else self.load()
        items: list[WorkItem] = []
        for order, identity in enumerate(identities):
            learned = weights.get(identity)
            weight = learned if learned else self.static_estimate(identity)
            items.append(
                WorkItem(
                    identity=identity,
                    weight=normalize_weight(weight, self.default_weight),
                    order=order,
                )
            )
        return items


def default_target_total(test_count: int) -> int:
    """Return the target weight sum used when none is configured."""
    return test_count * _DEFAULT_WEIGHT_PER_TEST


class WeightWriter:
    """Derives new weights from measured durations and persists them."""

    def __init__(self, path: Path, *, retry: RetryConfig | None = None) -> None:
        self.path = path
        self.retry = retry or RetryConfig()

    def update(
        self,
        previous: WeightTable,
        measured: Mapping[str, float],
        total_measured: float,
        target_total: float,
        *,
        discovered: Iterable[str] = (),
    ) -> WeightTable:
        """Rescale measured durations into weights summing to *target_total*.

        Each measured item gets ``duration / total_measured * target_total``.
        The table is rebuilt from this run: an item keeps its previous entry
        only when it was *discovered* but not measured, so deleted or renamed
        files drop out. With no measurable time the previous entries of the
        discovered items are kept as they are.
        """
        carried = {
            identity: previous.entries[identity]
            for identity in discovered
            if identity in previous.entries
        }
        if total_measured <= 0 or target_total <= 0:
            logger.debug("Nothing measured this run, keeping previous weights")
            return WeightTable(entries=carried)

        entries = {
            identity: entry for identity, entry in carried.items() if identity not in measured
        }
        for identity, duration in measured.items():
            share = max(duration, 0.0) / total_measured
            entries[identity] = WeightEntry(
                weight=round(share * target_total, _WEIGHT_PRECISION),
                time=duration,
            )
        return WeightTable(entries=entries)

    def save(self, table: WeightTable) -> bool:
        """Persist *table*; failures are logged and reported as False."""
        content = json.dumps(table.to_dict(), indent=2)
        try:
            retry_call(
                lambda attempt: atomic_write_text(self.path, content),
                self.retry,
                description=f"Writing weights to {self.path}",
            )
        except OSError as exc:
            logger.error("Could not write weights file %s: %s", self.path, exc)
            return False
        logger.info("Weights file generated: %s (%d entries)", self.path, len(table))
        return True
