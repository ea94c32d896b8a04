"""Tests for parashard.sharding.weights."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from parashard.retry import RetryConfig
from parashard.sharding.weights import (
    WeightEntry,
    WeightStore,
    WeightTable,
    WeightWriter,
    count_lines,
    default_target_total,
)
from tests.conftest import write_file, write_json


class TestWeightTable:
    def test_from_dict_skips_invalid_entries(self) -> None:
        table = WeightTable.from_dict(
            {
                "a.py": {"weight": 12.5, "time": 340},
                "b.py": {"weight": -1},
                "c.py": {"weight": "heavy"},
                "d.py": 7,
                "e.py": {"weight": True},
                "f.py": {"weight": 0},
            }
        )

        assert table.get("a.py") == 12.5
        assert table.entries["a.py"].time == 340.0
        assert "b.py" not in table
        assert "c.py" not in table
        assert "d.py" not in table
        assert "e.py" not in table
        assert table.get("f.py") == 0.0
        assert len(table) == 2

    def test_get_unknown_returns_none(self) -> None:
        assert WeightTable().get("missing.py") is None

    def test_to_dict_sorted_and_omits_missing_time(self) -> None:
        table = WeightTable(
            entries={"z.py": WeightEntry(weight=1.0), "a.py": WeightEntry(weight=2.0, time=5.0)}
        )
        data = table.to_dict()
        assert list(data) == ["a.py", "z.py"]
        assert data["a.py"] == {"weight": 2.0, "time": 5.0}
        assert data["z.py"] == {"weight": 1.0}


class TestCountLines:
    def test_counts_newlines_plus_one(self, tmp_path: Path) -> None:
        path = write_file(tmp_path, "t.py", "a\nb\nc\n")
        assert count_lines(path) == 4

    def test_empty_file(self, tmp_path: Path) -> None:
        path = write_file(tmp_path, "t.py", "")
        assert count_lines(path) == 1


class TestWeightStore:
    def test_missing_file_warns_and_returns_empty(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = WeightStore(tmp_path / "weights.json", root=tmp_path)
        table = store.load()
        assert len(table) == 0
        assert "Using line count as weight" in caplog.text

    def test_corrupt_file_returns_empty(self, tmp_path: Path) -> None:
        path = write_file(tmp_path, "weights.json", "{not json")
        assert len(WeightStore(path, root=tmp_path).load()) == 0

    def test_non_object_returns_empty(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, "weights.json", [1, 2, 3])
        assert len(WeightStore(path, root=tmp_path).load()) == 0

    def test_loads_entries(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, "weights.json", {"a.py": {"weight": 3}})
        assert WeightStore(path, root=tmp_path).load().get("a.py") == 3.0

    def test_static_estimate_uses_line_count(self, tmp_path: Path) -> None:
        write_file(tmp_path, "tests/test_a.py", "x\n" * 9)
        store = WeightStore(tmp_path / "w.json", root=tmp_path)
        assert store.static_estimate("tests/test_a.py") == 10.0

    def test_static_estimate_unreadable_uses_default(self, tmp_path: Path) -> None:
        store = WeightStore(tmp_path / "w.json", root=tmp_path, default_weight=2.0)
        assert store.static_estimate("missing.py") == 2.0

    def test_build_items_prefers_learned_weight(self, tmp_path: Path) -> None:
        write_file(tmp_path, "a.py", "1\n2\n3\n")
        write_file(tmp_path, "b.py", "1\n")
        store = WeightStore(tmp_path / "w.json", root=tmp_path)
        table = WeightTable(entries={"a.py": WeightEntry(weight=50.0)})

        items = store.build_items(["a.py", "b.py"], table)

        assert [(i.identity, i.weight, i.order) for i in items] == [
            ("a.py", 50.0, 0),
            ("b.py", 2.0, 1),
        ]

    def test_build_items_zero_weight_falls_back(self, tmp_path: Path) -> None:
        write_file(tmp_path, "a.py", "1\n2\n")
        store = WeightStore(tmp_path / "w.json", root=tmp_path)
        table = WeightTable(entries={"a.py": WeightEntry(weight=0.0)})
        assert store.build_items(["a.py"], table)[0].weight == 3.0

    def test_build_items_loads_table_when_not_given(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, "w.json", {"a.py": {"weight": 8}})
        store = WeightStore(path, root=tmp_path)
        assert store.build_items(["a.py"])[0].weight == 8.0


class TestDefaultTargetTotal:
    def test_ten_per_test(self) -> None:
        assert default_target_total(7) == 70
        assert default_target_total(0) == 0


class TestWeightWriter:
    def test_update_rescales_to_target(self, tmp_path: Path) -> None:
        writer = WeightWriter(tmp_path / "w.json")
        table = writer.update(WeightTable(), {"a.py": 300.0, "b.py": 100.0}, 400.0, 40)

        assert table.get("a.py") == 30.0
        assert table.get("b.py") == 10.0
        assert table.entries["a.py"].time == 300.0

    def test_update_rounds_to_three_decimals(self, tmp_path: Path) -> None:
        writer = WeightWriter(tmp_path / "w.json")
        table = writer.update(WeightTable(), {"a.py": 1.0, "b.py": 2.0}, 3.0, 1)
        assert table.get("a.py") == 0.333
        assert table.get("b.py") == 0.667

    def test_update_drops_undiscovered_entries(self, tmp_path: Path) -> None:
        previous = WeightTable(
            entries={f"deleted_{i}.py": WeightEntry(weight=7.0) for i in range(3)}
        )
        writer = WeightWriter(tmp_path / "w.json")
        table = writer.update(previous, {"a.py": 100.0}, 100.0, 10, discovered=["a.py"])
        assert sorted(table.entries) == ["a.py"]
        assert table.get("a.py") == 10.0

    def test_update_carries_discovered_but_unmeasured(self, tmp_path: Path) -> None:
        previous = WeightTable(
            entries={
                "old.py": WeightEntry(weight=4.0, time=12.0),
                "new.py": WeightEntry(weight=1.0),
                "gone.py": WeightEntry(weight=9.0),
            }
        )
        writer = WeightWriter(tmp_path / "w.json")
        table = writer.update(
            previous, {"new.py": 5.0}, 5.0, 10, discovered=["old.py", "new.py"]
        )
        assert table.get("old.py") == 4.0
        assert table.entries["old.py"].time == 12.0
        assert table.get("new.py") == 10.0
        assert "gone.py" not in table.entries

    def test_update_nothing_measured_keeps_discovered(self, tmp_path: Path) -> None:
        previous = WeightTable(
            entries={"a.py": WeightEntry(weight=4.0), "gone.py": WeightEntry(weight=2.0)}
        )
        writer = WeightWriter(tmp_path / "w.json")
        table = writer.update(previous, {"a.py": 0.0}, 0.0, 10, discovered=["a.py"])
        assert table.get("a.py") == 4.0
        assert "gone.py" not in table.entries
        assert table is not previous

    def test_save_writes_json(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "w.json"
        writer = WeightWriter(path)
        table = WeightTable(entries={"a.py": WeightEntry(weight=1.5, time=20.0)})

        assert writer.save(table) is True
        assert json.loads(path.read_text()) == {"a.py": {"weight": 1.5, "time": 20.0}}
        assert list(path.parent.iterdir()) == [path]

    def test_save_failure_is_not_fatal(
        self, tmp_path: Path, no_retry: RetryConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        writer = WeightWriter(tmp_path / "w.json", retry=no_retry)
        with patch(
            "parashard.sharding.weights.atomic_write_text",
            side_effect=OSError("disk full"),
        ) as mock_write:
            assert writer.save(WeightTable()) is False
        assert mock_write.call_count == 3
        assert "Could not write weights file" in caplog.text

    def test_saved_table_round_trips_through_store(self, tmp_path: Path) -> None:
        path = tmp_path / "w.json"
        writer = WeightWriter(path)
        writer.save(writer.update(WeightTable(), {"a.py": 2.0, "b.py": 6.0}, 8.0, 20))
        table = WeightStore(path, root=tmp_path).load()
        assert table.get("a.py") == 5.0
        assert table.get("b.py") == 15.0
