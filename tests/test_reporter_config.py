"""Tests for parashard.sharding.reporter_config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from parashard.errors import ConfigurationError
from parashard.sharding.reporter_config import (
    REPORTER_CONFIG_VERSION,
    STREAM_REPORTER,
    build_reporter_config,
    camel_case,
    load_user_overrides,
    merge_reporter_config,
    read_reporter_options,
    reporter_option_key,
    split_reporters,
    write_reporter_config,
)
from tests.conftest import write_file, write_json


class TestNaming:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("spec", "spec"),
            ("parashard-stream", "parashardStream"),
            ("mocha_junit_reporter", "mochaJunitReporter"),
            ("XMLOutput", "xmlOutput"),
            ("json2", "json2"),
        ],
    )
    def test_camel_case(self, value: str, expected: str) -> None:
        assert camel_case(value) == expected

    def test_option_key(self) -> None:
        assert reporter_option_key(STREAM_REPORTER) == "parashardStreamReporterOptions"

    def test_split_reporters(self) -> None:
        assert split_reporters(" spec, dot ,,json ") == ["spec", "dot", "json"]


class TestBuildAndMerge:
    def test_build_points_every_reporter_at_results(self) -> None:
        content = build_reporter_config([STREAM_REPORTER, "spec", "spec"], "out")
        assert content == {
            "configVersion": REPORTER_CONFIG_VERSION,
            "reporterEnabled": "parashard-stream, spec",
            "parashardStreamReporterOptions": {"reportDir": "out"},
            "specReporterOptions": {"reportDir": "out"},
        }

    def test_merge_unions_enabled_lists(self) -> None:
        base = build_reporter_config([STREAM_REPORTER], "out")
        merged = merge_reporter_config(base, {"reporterEnabled": "spec, parashard-stream"})
        assert merged["reporterEnabled"] == "parashard-stream, spec"

    def test_merge_shallow_merges_option_objects(self) -> None:
        base = build_reporter_config([STREAM_REPORTER], "out")
        merged = merge_reporter_config(
            base,
            {
                "parashardStreamReporterOptions": {"extra": True},
                "specReporterOptions": {"colors": False},
            },
        )
        assert merged["parashardStreamReporterOptions"] == {"reportDir": "out", "extra": True}
        assert merged["specReporterOptions"] == {"colors": False}

    def test_merge_ignores_user_version(self) -> None:
        base = build_reporter_config([STREAM_REPORTER], "out")
        merged = merge_reporter_config(base, {"configVersion": 99})
        assert merged["configVersion"] == REPORTER_CONFIG_VERSION

    def test_merge_does_not_mutate_base(self) -> None:
        base = build_reporter_config([STREAM_REPORTER], "out")
        merge_reporter_config(base, {"parashardStreamReporterOptions": {"reportDir": "x"}})
        assert base["parashardStreamReporterOptions"] == {"reportDir": "out"}


class TestUserOverrides:
    def test_none_path(self) -> None:
        assert load_user_overrides(None) == {}

    def test_missing_file_is_ignored(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        assert load_user_overrides(tmp_path / "nope.json") == {}
        assert "not found" in caplog.text

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        path = write_file(tmp_path, "opts.json", "{broken")
        with pytest.raises(ConfigurationError, match="Cannot read reporter options"):
            load_user_overrides(path)

    def test_non_object_raises(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, "opts.json", ["spec"])
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_user_overrides(path)


class TestWriteAndRead:
    def test_write_merges_user_file(self, tmp_path: Path) -> None:
        user = write_json(tmp_path, "opts.json", {"reporterEnabled": "dot"})
        path = tmp_path / ".parashard" / "reporter-config.json"

        written = write_reporter_config(
            path, [STREAM_REPORTER], "runner-results", user_options_path=user
        )

        assert json.loads(path.read_text()) == written
        assert written["reporterEnabled"] == "parashard-stream, dot"

    def test_read_stream_options(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        write_reporter_config(path, [STREAM_REPORTER], "/abs/results")
        assert read_reporter_options(path) == {"reportDir": "/abs/results"}

    def test_read_unknown_reporter_returns_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        write_reporter_config(path, [STREAM_REPORTER], "out")
        assert read_reporter_options(path, "spec") == {}

    def test_read_rejects_other_version(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, "cfg.json", {"configVersion": 2})
        with pytest.raises(ValueError, match="Unsupported reporter configuration version"):
            read_reporter_options(path)
