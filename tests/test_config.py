"""Tests for parashard.config."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from parashard.config import (
    CONFIG_FILE_NAME,
    ParashardConfig,
    load_config,
    validate_config,
    validate_results_area,
)
from parashard.errors import ConfigurationError
from parashard.sharding.reporter_config import STREAM_REPORTER


def _write_parashard_yml(root: Path, content: str) -> None:
    (root / CONFIG_FILE_NAME).write_text(content, encoding="utf-8")


class TestLoadConfigDefaults:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config.root == str(tmp_path.resolve())
        assert config.execution.workers == 2
        assert config.execution.bail is False
        assert config.execution.command[0] == sys.executable
        assert "{files}" in config.execution.command
        assert config.discovery.pattern == "tests/**/test_*.py"
        assert config.results.dir == "runner-results"
        assert config.results.strict is True
        assert config.reporters.enabled == [STREAM_REPORTER]
        assert config.weights.default_weight == 1.0
        assert config.retry.max_attempts == 3
        assert validate_config(config) == []

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        _write_parashard_yml(tmp_path, "")
        assert load_config(tmp_path).execution.workers == 2

    def test_paths_resolve_against_root(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        root = tmp_path.resolve()
        assert config.results_dir == root / "runner-results"
        assert config.weights_path == root / ".parashard" / "weights.json"
        assert config.reporter_config_path == root / ".parashard" / "reporter-config.json"
        assert config.reporter_options_path is None

    def test_absolute_paths_kept(self, tmp_path: Path) -> None:
        config = ParashardConfig(root=str(tmp_path))
        config.results.dir = "/var/tmp/results"
        assert config.results_dir == Path("/var/tmp/results")


class TestLoadConfigValues:
    def test_full_file(self, tmp_path: Path) -> None:
        _write_parashard_yml(
            tmp_path,
            """\
execution:
  workers: 4
  bail: true
  command: ["mocha", "--reporter-config={reporter_config}", "{files}"]
  files_separator: ","
  worker_env_var: RUNNER_ID
  worker_timeout: 120
  bail_grace_period: 2
  extra_args: "--retries 2"
discovery:
  specs: [a.js, b.js]
  ignore: "vendor/**"
results:
  dir: out/results
  strict: false
  cleanup: false
reporters:
  enabled: [spec]
  options_path: reporters.json
weights:
  enabled: false
  path: weights.json
  default_weight: 2
  target_total: 500
retry:
  max_attempts: 5
  base_delay: 0.1
""",
        )

        config = load_config(tmp_path)

        assert config.execution.workers == 4
        assert config.execution.bail is True
        assert config.execution.command == [
            "mocha",
            "--reporter-config={reporter_config}",
            "{files}",
        ]
        assert config.execution.files_separator == ","
        assert config.execution.worker_env_var == "RUNNER_ID"
        assert config.execution.worker_timeout == 120.0
        assert config.execution.bail_grace_period == 2.0
        assert config.execution.extra_args == ["--retries", "2"]
        assert config.discovery.specs == ["a.js", "b.js"]
        assert config.discovery.ignore == "vendor/**"
        assert config.results.dir == "out/results"
        assert config.results.strict is False
        assert config.results.cleanup is False
        assert config.reporters.enabled == [STREAM_REPORTER, "spec"]
        assert config.reporter_options_path == tmp_path.resolve() / "reporters.json"
        assert config.weights.enabled is False
        assert config.weights.default_weight == 2.0
        assert config.weights.target_total == 500.0
        assert config.retry.max_attempts == 5
        assert config.retry.base_delay == 0.1
        assert validate_config(config) == []

    def test_command_string_split(self, tmp_path: Path) -> None:
        _write_parashard_yml(tmp_path, "execution:\n  command: 'runner {files}'\n")
        assert load_config(tmp_path).execution.command == ["runner", "{files}"]

    def test_env_var_resolution(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESULTS_ROOT", "/ci/results")
        _write_parashard_yml(tmp_path, "results:\n  dir: ${RESULTS_ROOT}/run\n")
        assert load_config(tmp_path).results.dir == "/ci/results/run"

    def test_unset_env_var_warns(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        monkeypatch.delenv("PARASHARD_UNSET_VAR", raising=False)
        _write_parashard_yml(tmp_path, "weights:\n  path: ${PARASHARD_UNSET_VAR}w.json\n")
        assert load_config(tmp_path).weights.path == "w.json"
        assert "PARASHARD_UNSET_VAR" in caplog.text

    def test_explicit_config_file(self, tmp_path: Path) -> None:
        other = tmp_path / "ci.yml"
        other.write_text("execution:\n  workers: 7\n", encoding="utf-8")
        assert load_config(tmp_path, other).execution.workers == 7

    def test_raw_kept(self, tmp_path: Path) -> None:
        _write_parashard_yml(tmp_path, "custom:\n  key: value\n")
        assert load_config(tmp_path).raw == {"custom": {"key": "value"}}


class TestLoadConfigErrors:
    def test_invalid_yaml(self, tmp_path: Path) -> None:
        _write_parashard_yml(tmp_path, "execution: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(tmp_path)

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path, tmp_path / "nope.yml")

    def test_bad_value_type(self, tmp_path: Path) -> None:
        _write_parashard_yml(tmp_path, "execution:\n  workers: many\n")
        with pytest.raises(ConfigurationError, match="Invalid value"):
            load_config(tmp_path)


class TestValidateConfig:
    def test_zero_workers(self, config: ParashardConfig) -> None:
        config.execution.workers = 0
        assert any("execution.workers" in e for e in validate_config(config))

    def test_command_without_files(self, config: ParashardConfig) -> None:
        config.execution.command = ["runner", "--all"]
        assert any("{files}" in e for e in validate_config(config))

    def test_empty_command(self, config: ParashardConfig) -> None:
        config.execution.command = []
        assert "execution.command must not be empty" in validate_config(config)

    def test_negative_timeouts(self, config: ParashardConfig) -> None:
        config.execution.worker_timeout = -1
        config.execution.bail_grace_period = -1
        errors = validate_config(config)
        assert any("worker_timeout" in e for e in errors)
        assert any("bail_grace_period" in e for e in errors)

    def test_empty_env_var(self, config: ParashardConfig) -> None:
        config.execution.worker_env_var = ""
        assert "execution.worker_env_var must not be empty" in validate_config(config)

    def test_weights(self, config: ParashardConfig) -> None:
        config.weights.default_weight = 0
        config.weights.target_total = -5
        errors = validate_config(config)
        assert any("default_weight" in e for e in errors)
        assert any("target_total" in e for e in errors)

    def test_results_dir_required(self, config: ParashardConfig) -> None:
        config.results.dir = ""
        assert "results.dir is required" in validate_config(config)

    def test_embedded_files_placeholder_accepted(self, config: ParashardConfig) -> None:
        config.execution.command = ["runner", "--spec={files}"]
        assert validate_config(config) == []

    def test_results_dir_is_root(self, config: ParashardConfig) -> None:
        config.results.dir = "."
        errors = validate_config(config)
        assert any("must not be the project root" in e for e in errors)

    def test_results_dir_contains_root(self, config: ParashardConfig, tmp_path: Path) -> None:
        config.results.dir = str(tmp_path.parent)
        assert any("must not be the project root" in e for e in validate_config(config))

    def test_results_dir_holding_weights(self, config: ParashardConfig) -> None:
        config.results.dir = ".parashard"
        errors = validate_config(config)
        assert "weights.path must not be inside results.dir (.parashard)" in errors
        assert "reporters.config_path must not be inside results.dir (.parashard)" in errors

    def test_results_dir_holding_reporter_options(self, config: ParashardConfig) -> None:
        config.reporters.options_path = "runner-results/opts.json"
        errors = validate_config(config)
        assert errors == ["reporters.options_path must not be inside results.dir (runner-results)"]

    def test_results_subdirectory_accepted(self, config: ParashardConfig) -> None:
        config.results.dir = "build/results"
        assert validate_results_area(config) == []
