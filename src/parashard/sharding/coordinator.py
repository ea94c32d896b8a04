"""End-to-end run: weigh, partition, fan out, collect, learn."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from parashard.config import validate_results_area
from parashard.errors import ConfigurationError
from parashard.sharding.collector import (
    ResultCollector,
    prepare_results_dir,
    verify_result_count,
)
from parashard.sharding.partitioner import effective_worker_count, partition
from parashard.sharding.reporter_config import write_reporter_config
from parashard.sharding.supervisor import WorkerSupervisor, run_workers
from parashard.sharding.weights import (
    WeightStore,
    WeightTable,
    WeightWriter,
    default_target_total,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parashard.config import ParashardConfig
    from parashard.sharding.models import AggregateResult, ExecutionOutcome, Partition

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Everything the CLI needs to report on and gate a finished run."""

    items: list[str]
    partitions: list[Partition]
    outcomes: list[ExecutionOutcome]
    aggregate: AggregateResult
    wall_time_ms: float = 0.0
    missing: list[str] = field(default_factory=list)
    weights_written: bool = False

    @property
    def failed_workers(self) -> list[int]:
        """Indexes of workers that exited non-zero."""
        return [o.worker_index for o in self.outcomes if not o.success]

    @property
    def time_saved_ms(self) -> float:
        """Summed item durations minus the wall-clock time of the run."""
        return self.aggregate.totals.duration - self.wall_time_ms

    @property
    def success(self) -> bool:
        """True when every record passed and every worker exited cleanly."""
        return self.aggregate.totals.failures == 0 and not self.failed_workers

    @property
    def exit_code(self) -> int:
        """Process exit code for CI gating."""
        return 0 if self.success else 1


class Coordinator:
    """Drives one parallel run from a configuration built at startup."""

    def __init__(self, config: ParashardConfig) -> None:
        self.config = config
        self.root = Path(config.root)

    def _weight_store(self) -> WeightStore:
        return WeightStore(
            self.config.weights_path,
            root=self.root,
            default_weight=self.config.weights.default_weight,
        )

    def plan(self, identities: Sequence[str]) -> tuple[list[Partition], WeightTable]:
        """Weigh *identities* and split them across the configured workers.

        Raises:
            ConfigurationError: If there is nothing to run or the worker
                count is invalid.
        """
        if not identities:
            raise ConfigurationError("No test suites found.")
        requested = self.config.execution.workers
        try:
            workers = effective_worker_count(len(identities), requested)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if workers < requested:
            logger.warning("Limiting worker count to %d due to fewer test suites.", workers)

        store = self._weight_store()
        table = store.load()
        items = store.build_items(identities, table)
        partitions = partition(items, workers, min_weight=self.config.weights.default_weight)
        return partitions, table

    async def run(self, identities: Sequence[str]) -> RunSummary:
        """Execute *identities* across workers and collect the results.

        Raises:
            ConfigurationError: Before any worker starts, for an empty or
                invalid run.
            BailError: In bail mode, when a worker exits non-zero.
            ResultCountMismatchError: In strict mode, when results do not
                cover every discovered item.
        """
        items = list(identities)
        partitions, table = self.plan(items)

        unsafe = validate_results_area(self.config)
        if unsafe:
            raise ConfigurationError("; ".join(unsafe))
        results_dir = self.config.results_dir
        prepare_results_dir(results_dir)
        write_reporter_config(
            self.config.reporter_config_path,
            self.config.reporters.enabled,
            str(results_dir),
            user_options_path=self.config.reporter_options_path,
        )

        supervisor = WorkerSupervisor(
            self.config.execution,
            reporter_config_path=self.config.reporter_config_path,
            cwd=self.root,
        )
        start = time.perf_counter()
        outcomes = await run_workers(supervisor, partitions, bail=self.config.execution.bail)
        wall_time_ms = (time.perf_counter() - start) * 1000

        collector = ResultCollector(results_dir, cleanup=self.config.results.cleanup)
        aggregate = await collector.collect(len(partitions))
        missing = verify_result_count(aggregate, items, strict=self.config.results.strict)

        summary = RunSummary(
            items=items,
            partitions=partitions,
            outcomes=outcomes,
            aggregate=aggregate,
            wall_time_ms=wall_time_ms,
            missing=missing,
        )
        if self.config.weights.enabled:
            summary.weights_written = self.learn_weights(table, aggregate, items)
        return summary

    def learn_weights(
        self,
        previous: WeightTable,
        aggregate: AggregateResult,
        discovered: Sequence[str],
    ) -> bool:
        """Derive and persist weights for the *discovered* items from their measured durations."""
        measured = {identity: record.duration for identity, record in aggregate.records.items()}
        totals = aggregate.totals
        target = self.config.weights.target_total or default_target_total(totals.tests)
        writer = WeightWriter(self.config.weights_path, retry=self.config.retry)
        table = writer.update(previous, measured, totals.duration, target, discovered=discovered)
        return writer.save(table)
