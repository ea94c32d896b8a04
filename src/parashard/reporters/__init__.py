"""Console and file reporters for finished runs."""

from parashard.reporters.json_reporter import JSONReporter
from parashard.reporters.terminal import CLIReporter, reporter

__all__ = ["CLIReporter", "JSONReporter", "reporter"]
