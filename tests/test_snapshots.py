import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from snapshots import (
    ENRICHED,
    FAILED_ENRICHED,
    RAW,
    PersistenceError,
    find_latest_snapshot,
    load_latest_snapshot,
    load_snapshot,
    run_version,
    save_snapshot,
)


def test_run_version_is_sortable_timestamp() -> None:
    assert run_version(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == "20240102T030405"


def test_save_snapshot_creates_directory_and_writes_array(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "data"

    path = save_snapshot(target, RAW, "20240101T000000", [{"codename": "alpha"}])

    assert path == target / "raw-20240101T000000.json"
    assert json.loads(path.read_text(encoding="utf-8")) == [{"codename": "alpha"}]


def test_find_latest_snapshot_picks_newest_of_kind(tmp_path: Path) -> None:
    save_snapshot(tmp_path, ENRICHED, "20240101T000000", [])
    save_snapshot(tmp_path, ENRICHED, "20240102T000000", [])
    save_snapshot(tmp_path, FAILED_ENRICHED, "20240103T000000", [])
    (tmp_path / "enriched-notes.txt").write_text("x", encoding="utf-8")
    (tmp_path / "enriched-backup.json").write_text("[]", encoding="utf-8")

    latest = find_latest_snapshot(tmp_path, ENRICHED)

    assert latest == tmp_path / "enriched-20240102T000000.json"


def test_find_latest_snapshot_returns_none_when_missing(tmp_path: Path) -> None:
    assert find_latest_snapshot(tmp_path, RAW) is None
    assert find_latest_snapshot(tmp_path / "absent", RAW) is None


def test_load_snapshot_rejects_non_array(tmp_path: Path) -> None:
    path = tmp_path / "raw-20240101T000000.json"
    path.write_text('{"codename": "alpha"}', encoding="utf-8")

    with pytest.raises(PersistenceError, match="JSON array"):
        load_snapshot(path)


def test_load_snapshot_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "raw-20240101T000000.json"
    path.write_text("[{", encoding="utf-8")

    with pytest.raises(PersistenceError, match="Could not read"):
        load_snapshot(path)


def test_load_snapshot_skips_non_object_items(tmp_path: Path) -> None:
    path = tmp_path / "raw-20240101T000000.json"
    path.write_text('[{"codename": "alpha"}, 3, "x"]', encoding="utf-8")

    assert load_snapshot(path) == [{"codename": "alpha"}]


def test_load_latest_snapshot_raises_without_files(tmp_path: Path) -> None:
    with pytest.raises(PersistenceError, match="No enriched snapshot"):
        load_latest_snapshot(tmp_path, ENRICHED)


def test_save_snapshot_wraps_write_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(PersistenceError, match="Could not write"):
        save_snapshot(blocker, RAW, "20240101T000000", [])
