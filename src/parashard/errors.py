"""Exception hierarchy for parashard."""

from __future__ import annotations


class ParashardError(Exception):
    """Base class for all errors raised by parashard."""

    exit_code: int = 1


class ConfigurationError(ParashardError):
    """Invalid configuration or an empty work set, detected before spawning workers."""


class WorkerLaunchError(ParashardError):
    """The external test command could not be started."""


class BailError(ParashardError):
    """A worker failed while bail mode was active."""

    def __init__(self, worker_index: int, exit_code: int) -> None:
        """Initialize with the failing worker and its exit code.

        Args:
            worker_index: One-based index of the worker that failed.
            exit_code: Exit code reported by that worker.
        """
        super().__init__(f"Worker {worker_index} exited with code {exit_code} (bail enabled)")
        self.worker_index = worker_index
        # A signal-killed worker reports a negative code; never exit 0 on bail.
        self.exit_code = exit_code if exit_code > 0 else 1


class ResultCountMismatchError(ParashardError):
    """Collected results do not cover every discovered work item."""

    def __init__(self, expected: int, collected: int, missing: list[str]) -> None:
        """Initialize with the counts and the identities lacking a result.

        Args:
            expected: Number of work items discovered.
            collected: Number of distinct identities found in the results.
            missing: Identities with no result record.
        """
        super().__init__(f"Test suites found ({expected}) do not match results ({collected}).")
        self.expected = expected
        self.collected = collected
        self.missing = missing
