"""Weight-balanced partitioning of work items across workers.

Uses the longest-processing-time-first heuristic: items are taken in
descending weight order and each goes to the currently least-loaded
partition. The result is deterministic for a given input and keeps the
slowest worker within ``4/3 - 1/(3k)`` of the optimal makespan.
"""

from __future__ import annotations

import heapq
import logging
import math
from typing import TYPE_CHECKING

from parashard.sharding.models import Partition, WorkItem

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_MIN_WEIGHT = 1.0
"""Weight substituted for negative or non-numeric estimates."""


def effective_worker_count(item_count: int, workers: int) -> int:
    """Clamp *workers* to the number of items (never below 1).

    Raises:
        ValueError: If *workers* is less than 1.
    """
    if workers < 1:
        msg = f"worker count must be >= 1, got {workers}"
        raise ValueError(msg)
    if item_count == 0:
        return workers
    return min(workers, item_count)


def normalize_weight(weight: object, min_weight: float = DEFAULT_MIN_WEIGHT) -> float:
    """Return *weight* as a usable non-negative float.

    Negative, NaN, infinite or non-numeric values become *min_weight*;
    zero is a valid estimate and is kept.
    """
    if isinstance(weight, bool) or not isinstance(weight, int | float):
        return min_weight
    value = float(weight)
    if not math.isfinite(value) or value < 0:
        return min_weight
    return value


def partition(
    items: Sequence[WorkItem],
    k: int,
    *,
    min_weight: float = DEFAULT_MIN_WEIGHT,
) -> list[Partition]:
    """Split *items* into balanced partitions.

    Args:
        items: Work items in discovery order.
        k: Requested worker count (>= 1). Clamped to ``len(items)``.
        min_weight: Substitute for malformed weights.

    Returns:
        ``k`` empty partitions when *items* is empty, otherwise
        ``min(k, len(items))`` partitions sorted by descending total weight.

    Raises:
        ValueError: If *k* is less than 1.
    """
    count = effective_worker_count(len(items), k)
    partitions = [Partition() for _ in range(count)]
    if not items:
        return partitions

    normalized = [
        WorkItem(
            identity=item.identity,
            weight=normalize_weight(item.weight, min_weight),
            order=index,
        )
        for index, item in enumerate(items)
    ]
    # Stable on discovery order for equal weights.
    normalized.sort(key=lambda item: (-item.weight, item.order))

    # (load, partition index): the heap top is always the least-loaded
    # partition, lowest index first on ties.
    heap = [(0.0, index) for index in range(count)]
    for item in normalized:
        load, index = heapq.heappop(heap)
        partitions[index].add(item)
        heapq.heappush(heap, (load + item.weight, index))

    ordered = sorted(partitions, key=lambda p: p.total_weight, reverse=True)
    logger.debug(
        "Partitioned %d item(s) into %d worker(s): %s",
        len(items),
        count,
        ", ".join(f"{p.total_weight:g}" for p in ordered),
    )
    return ordered


def makespan(partitions: Sequence[Partition]) -> float:
    """Return the largest partition weight (0 for no partitions)."""
    return max((p.total_weight for p in partitions), default=0.0)
