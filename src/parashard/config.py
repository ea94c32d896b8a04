"""Configuration parsing from ``.parashard.yml``."""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from parashard.errors import ConfigurationError
from parashard.retry import RetryConfig
from parashard.sharding.reporter_config import STREAM_REPORTER

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".parashard.yml"

FILES_PLACEHOLDER = "{files}"
REPORTER_CONFIG_PLACEHOLDER = "{reporter_config}"
WORKER_PLACEHOLDER = "{worker}"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")


def _default_command() -> list[str]:
    return [
        sys.executable,
        "-m",
        "pytest",
        "-p",
        "parashard.pytest_plugin",
        f"--parashard-reporter-config={REPORTER_CONFIG_PLACEHOLDER}",
        FILES_PLACEHOLDER,
    ]


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


@dataclass
class ExecutionConfig:
    """How workers are launched."""

    workers: int = 2
    """Number of parallel worker processes (clamped to the item count)."""

    bail: bool = False
    """Abort the whole run as soon as one worker exits non-zero."""

    command: list[str] = field(default_factory=_default_command)
    """Argument template; ``{files}``, ``{reporter_config}`` and ``{worker}`` are expanded."""

    files_separator: str = ""
    """Join the partition into one ``{files}`` argument (empty = one argument per file)."""

    worker_env_var: str = "PARASHARD_WORKER"
    """Environment variable carrying the one-based worker index."""

    worker_timeout: float = 0.0
    """Seconds before a worker is killed (0 = no limit)."""

    bail_grace_period: float = 5.0
    """Seconds cancelled workers get to exit before being killed."""

    extra_args: list[str] = field(default_factory=list)
    """Arguments appended to every worker command."""

    verbose: bool = False
    """Log worker lifecycle events in detail."""

    redirect_stdout: bool = False
    """Send worker stdout to stderr, keeping stdout free for machine-readable output."""


@dataclass
class DiscoveryConfig:
    """Where test files come from."""

    specs: list[str] = field(default_factory=list)
    """Explicit list of test files (takes precedence over ``pattern``)."""

    pattern: str = "tests/**/test_*.py"
    """Glob pattern, or a directory to walk."""

    ignore: str = "node_modules/**"
    """Glob pattern excluded from pattern matches."""


@dataclass
class ResultsConfig:
    """Shared results area and integrity checks."""

    dir: str = "runner-results"
    """Directory every worker writes its records to."""

    strict: bool = True
    """Fail the run when results do not cover every discovered file."""

    cleanup: bool = True
    """Delete the results directory after collection."""


@dataclass
class ReportersConfig:
    """Reporter configuration handed to the workers."""

    enabled: list[str] = field(default_factory=lambda: [STREAM_REPORTER])
    """Reporter identifiers written to ``reporterEnabled``."""

    options_path: str = ""
    """User JSON file merged into the generated configuration."""

    config_path: str = ".parashard/reporter-config.json"
    """Where the merged configuration file is written."""


@dataclass
class WeightsConfig:
    """Learned weight persistence."""

    enabled: bool = True
    """Write updated weights after each run."""

    path: str = ".parashard/weights.json"
    """Weight file location."""

    default_weight: float = 1.0
    """Minimum positive weight used for malformed or unreadable estimates."""

    target_total: float = 0.0
    """Sum the learned weights are rescaled to (0 = ten per executed test)."""


@dataclass
class ParashardConfig:
    """Complete configuration, built once at startup and passed explicitly."""

    root: str
    """Project root; relative paths below resolve against it."""

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    results: ResultsConfig = field(default_factory=ResultsConfig)
    reporters: ReportersConfig = field(default_factory=ReportersConfig)
    weights: WeightsConfig = field(default_factory=WeightsConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for extension/debugging."""

    def resolve(self, path: str) -> Path:
        """Resolve *path* against the project root."""
        candidate = Path(path)
        return candidate if candidate.is_absolute() else Path(self.root) / candidate

    @property
    def results_dir(self) -> Path:
        """Absolute results directory."""
        return self.resolve(self.results.dir)

    @property
    def weights_path(self) -> Path:
        """Absolute weight file path."""
        return self.resolve(self.weights.path)

    @property
    def reporter_config_path(self) -> Path:
        """Absolute path of the generated reporter configuration."""
        return self.resolve(self.reporters.config_path)

    @property
    def reporter_options_path(self) -> Path | None:
        """Absolute path of the user override file, if configured."""
        if not self.reporters.options_path:
            return None
        return self.resolve(self.reporters.options_path)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _str_list(value: Any, default: list[str]) -> list[str]:
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return [str(item) for item in value]
    return list(default)


def _parse_execution_config(raw: dict[str, Any]) -> ExecutionConfig:
    """Parse execution configuration from raw YAML."""
    exec_raw = _section(raw, "execution")
    default = ExecutionConfig()
    timeout = exec_raw.get("worker_timeout", default.worker_timeout)

    return ExecutionConfig(
        workers=int(exec_raw.get("workers", default.workers)),
        bail=bool(exec_raw.get("bail", default.bail)),
        command=_str_list(exec_raw.get("command"), default.command),
        files_separator=str(exec_raw.get("files_separator", default.files_separator)),
        worker_env_var=str(exec_raw.get("worker_env_var", default.worker_env_var)),
        worker_timeout=float(timeout or 0.0),
        bail_grace_period=float(exec_raw.get("bail_grace_period", default.bail_grace_period)),
        extra_args=_str_list(exec_raw.get("extra_args"), default.extra_args),
        verbose=bool(exec_raw.get("verbose", default.verbose)),
    )


def _parse_discovery_config(raw: dict[str, Any]) -> DiscoveryConfig:
    """Parse discovery configuration from raw YAML."""
    disc_raw = _section(raw, "discovery")
    default = DiscoveryConfig()
    specs_raw = disc_raw.get("specs", [])

    return DiscoveryConfig(
        specs=[str(s) for s in specs_raw] if isinstance(specs_raw, list) else [],
        pattern=str(disc_raw.get("pattern", default.pattern)),
        ignore=str(disc_raw.get("ignore", default.ignore)),
    )


def _parse_results_config(raw: dict[str, Any]) -> ResultsConfig:
    """Parse results configuration from raw YAML."""
    results_raw = _section(raw, "results")

    return ResultsConfig(
        dir=str(results_raw.get("dir", "runner-results")),
        strict=bool(results_raw.get("strict", True)),
        cleanup=bool(results_raw.get("cleanup", True)),
    )


def _parse_reporters_config(raw: dict[str, Any]) -> ReportersConfig:
    """Parse reporter configuration from raw YAML."""
    rep_raw = _section(raw, "reporters")
    default = ReportersConfig()

    enabled = _str_list(rep_raw.get("enabled"), default.enabled)
    if STREAM_REPORTER not in enabled:
        enabled.insert(0, STREAM_REPORTER)

    return ReportersConfig(
        enabled=enabled,
        options_path=str(rep_raw.get("options_path", "")),
        config_path=str(rep_raw.get("config_path", default.config_path)),
    )


def _parse_weights_config(raw: dict[str, Any]) -> WeightsConfig:
    """Parse weight persistence configuration from raw YAML."""
    weights_raw = _section(raw, "weights")
    default = WeightsConfig()

    return WeightsConfig(
        enabled=bool(weights_raw.get("enabled", True)),
        path=str(weights_raw.get("path", default.path)),
        default_weight=float(weights_raw.get("default_weight", default.default_weight)),
        target_total=float(weights_raw.get("target_total", default.target_total)),
    )


def _parse_retry_config(raw: dict[str, Any]) -> RetryConfig:
    """Parse retry policy from raw YAML."""
    retry_raw = _section(raw, "retry")
    default = RetryConfig()

    return RetryConfig(
        max_attempts=int(retry_raw.get("max_attempts", default.max_attempts)),
        base_delay=float(retry_raw.get("base_delay", default.base_delay)),
        max_delay=float(retry_raw.get("max_delay", default.max_delay)),
        backoff_factor=float(retry_raw.get("backoff_factor", default.backoff_factor)),
    )


def load_config(root: str | Path, config_file: str | Path | None = None) -> ParashardConfig:
    """Load and parse the complete ``.parashard.yml`` configuration.

    Falls back to defaults when the file is missing or incomplete.

    Raises:
        ConfigurationError: If the file exists but is not valid YAML or
            holds values of the wrong type.
    """
    root_path = Path(root).resolve()
    config_path = Path(config_file) if config_file else root_path / CONFIG_FILE_NAME

    raw: dict[str, Any] = {}
    if config_path.is_file():
        try:
            parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            msg = f"Invalid YAML in {config_path}: {exc}"
            raise ConfigurationError(msg) from exc
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
    elif config_file:
        msg = f"Configuration file not found: {config_path}"
        raise ConfigurationError(msg)

    try:
        return ParashardConfig(
            root=str(root_path),
            execution=_parse_execution_config(raw),
            discovery=_parse_discovery_config(raw),
            results=_parse_results_config(raw),
            reporters=_parse_reporters_config(raw),
            weights=_parse_weights_config(raw),
            retry=_parse_retry_config(raw),
            raw=raw,
        )
    except (TypeError, ValueError) as exc:
        msg = f"Invalid value in {config_path}: {exc}"
        raise ConfigurationError(msg) from exc


def _validate_execution_config(execution: ExecutionConfig) -> list[str]:
    """Validate worker launch settings."""
    errors: list[str] = []

    if execution.workers < 1:
        errors.append(f"execution.workers must be at least 1 (got: {execution.workers})")

    if not execution.command:
        errors.append("execution.command must not be empty")
    elif not any(FILES_PLACEHOLDER in arg for arg in execution.command):
        errors.append(f"execution.command must contain a {FILES_PLACEHOLDER} argument")

    if execution.worker_timeout < 0:
        errors.append(
            f"execution.worker_timeout must be non-negative (got: {execution.worker_timeout})"
        )

    if execution.bail_grace_period < 0:
        errors.append(
            "execution.bail_grace_period must be non-negative "
            f"(got: {execution.bail_grace_period})"
        )

    if not execution.worker_env_var:
        errors.append("execution.worker_env_var must not be empty")

    return errors


def _validate_weights_config(weights: WeightsConfig) -> list[str]:
    """Validate weight settings."""
    errors: list[str] = []

    if weights.default_weight <= 0:
        errors.append(
            f"weights.default_weight must be positive (got: {weights.default_weight})"
        )

    if weights.target_total < 0:
        errors.append(f"weights.target_total must be non-negative (got: {weights.target_total})")

    return errors


def _validate_retry_config(retry: RetryConfig) -> list[str]:
    """Validate the retry policy."""
    errors: list[str] = []

    if retry.max_attempts < 1:
        errors.append(f"retry.max_attempts must be at least 1 (got: {retry.max_attempts})")

    if retry.base_delay < 0 or retry.max_delay < 0:
        errors.append("retry delays must be non-negative")

    return errors


def _contains(parent: Path, child: Path) -> bool:
    return parent == child or parent in child.parents


def validate_results_area(config: ParashardConfig) -> list[str]:
    """Check that the results area cannot swallow project files.

    The area is emptied before and removed after every run, so it must
    not be the project root or one of its ancestors, and it must not hold
    the weight file or the generated reporter configuration.
    """
    errors: list[str] = []
    if not config.results.dir:
        return errors

    results_dir = config.results_dir.resolve()
    if _contains(results_dir, Path(config.root).resolve()):
        errors.append(
            f"results.dir must not be the project root or contain it (got: {config.results.dir})"
        )
        return errors

    protected = {
        "weights.path": config.weights_path,
        "reporters.config_path": config.reporter_config_path,
    }
    if config.reporter_options_path is not None:
        protected["reporters.options_path"] = config.reporter_options_path
    for name, path in protected.items():
        if _contains(results_dir, path.resolve()):
            errors.append(f"{name} must not be inside results.dir ({config.results.dir})")

    return errors


def validate_config(config: ParashardConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    if not config.results.dir:
        errors.append("results.dir is required")
    errors.extend(validate_results_area(config))

    errors.extend(_validate_execution_config(config.execution))
    errors.extend(_validate_weights_config(config.weights))
    errors.extend(_validate_retry_config(config.retry))

    return errors
