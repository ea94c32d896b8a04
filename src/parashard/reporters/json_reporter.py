"""JSON reporter: machine-readable run summary for CI gating."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from parashard import __version__
from parashard.utils.atomic import atomic_write_text

if TYPE_CHECKING:
    from pathlib import Path

    from parashard.sharding.coordinator import RunSummary

logger = logging.getLogger(__name__)


class JSONReporter:
    """Serialize a ``RunSummary`` into a single JSON document."""

    def generate(self, output_path: Path, summary: RunSummary) -> Path:
        """Write the JSON report file.

        Args:
            output_path: Path to write the JSON file.
            summary: The finished run.

        Returns:
            The path to the generated JSON file.
        """
        atomic_write_text(output_path, self.generate_string(summary))
        logger.info("JSON report written to %s", output_path)
        return output_path

    def generate_string(self, summary: RunSummary) -> str:
        """Return the JSON report as a string."""
        return json.dumps(build_report(summary), indent=2, ensure_ascii=False)


def build_report(summary: RunSummary) -> dict[str, Any]:
    """Build the JSON report structure."""
    aggregate = summary.aggregate
    totals = aggregate.totals
    return {
        "version": __version__,
        "generated_at": datetime.now(UTC).isoformat(),
        "success": summary.success,
        "exit_code": summary.exit_code,
        "wall_time_ms": round(summary.wall_time_ms, 3),
        "totals": {
            "suites": len(aggregate.records),
            "tests": totals.tests,
            "passes": totals.passes,
            "failures": totals.failures,
            "pending": totals.pending,
            "duration": totals.duration,
        },
        "workers": [
            {
                "worker": outcome.worker_index,
                "exit_code": outcome.exit_code,
                "files": outcome.item_count,
                "duration_ms": round(outcome.duration_ms, 3),
                "timed_out": outcome.timed_out,
                "error": outcome.error,
            }
            for outcome in summary.outcomes
        ],
        "partitions": [
            {"worker": index, "weight": part.total_weight, "files": list(part.items)}
            for index, part in enumerate(summary.partitions, start=1)
        ],
        "results": [record.to_dict() for record in aggregate.records.values()],
        "missing": list(summary.missing),
        "anomalies": {
            "duplicates": list(aggregate.duplicates),
            "missing_markers": list(aggregate.missing_markers),
            "silent_workers": list(aggregate.silent_workers),
            "incomplete_workers": list(aggregate.incomplete_workers),
            "malformed": aggregate.malformed,
        },
    }
