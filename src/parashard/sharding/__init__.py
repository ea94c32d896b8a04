"""Weighted scheduling and result aggregation for parallel test runs."""

from parashard.sharding.collector import ResultCollector, prepare_results_dir, verify_result_count
from parashard.sharding.models import (
    AggregateResult,
    CompletionMarker,
    ExecutionOutcome,
    Partition,
    ResultRecord,
    WorkerHandle,
    WorkerStatus,
    WorkItem,
)
from parashard.sharding.partitioner import effective_worker_count, makespan, partition
from parashard.sharding.protocol import ResultStreamWriter, read_stream
from parashard.sharding.reporter_config import STREAM_REPORTER, write_reporter_config
from parashard.sharding.weights import WeightStore, WeightTable, WeightWriter

__all__ = [
    "STREAM_REPORTER",
    "AggregateResult",
    "CompletionMarker",
    "ExecutionOutcome",
    "Partition",
    "ResultCollector",
    "ResultRecord",
    "ResultStreamWriter",
    "WeightStore",
    "WeightTable",
    "WeightWriter",
    "WorkItem",
    "WorkerHandle",
    "WorkerStatus",
    "effective_worker_count",
    "makespan",
    "partition",
    "prepare_results_dir",
    "read_stream",
    "verify_result_count",
    "write_reporter_config",
]
