"""parashard: weight-balanced parallel test execution."""

__version__ = "0.4.0"
