"""Tests for the ops-core command line."""

import json
from pathlib import Path

import pytest

from ops_core.cli import main
from ops_core.store import FileStore, MemoryStore


@pytest.fixture
def data_root(tmp_path: Path, sales_store: MemoryStore) -> Path:
    store = FileStore.from_root(tmp_path)
    for name in sales_store.collection_names():
        store.insert_many(name, sales_store.find(name))
    return tmp_path


def test_sales_command(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["sales", "--start", "2024-10-01", "--end", "2024-10-31", "--data-root", str(data_root), "--force"])
    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["recordsAggregated"] == 4
    assert summary["incremental"] is False
    assert len(FileStore.from_root(data_root).find("sales_line_items_aggregated")) == 4


def test_location_filter(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(
        ["sales", "--start", "2024-10-24", "--end", "2024-10-24", "--location", "loc-2", "--data-root", str(data_root)]
    )
    assert code == 0
    assert json.loads(capsys.readouterr().out)["recordsAggregated"] == 1


def test_range_commands_require_dates(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["labor", "--data-root", str(data_root)]) == 2
    assert "requires --start and --end" in capsys.readouterr().err


def test_invalid_dates(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["revenue", "--start", "2024-10-31", "--end", "2024-10-01", "--data-root", str(data_root)]) == 1
    assert "ERROR" in capsys.readouterr().err


def test_workers_command(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["workers", "--data-root", str(data_root), "--verbose"]) == 0
    assert json.loads(capsys.readouterr().out)["recordsAggregated"] == 0


def test_unknown_command() -> None:
    with pytest.raises(SystemExit):
        main(["payments"])
