"""Versioned JSON snapshot files shared between pipeline stages.

Every stage writes its full output as ``<kind>-<version>.json`` in the data
directory. Versions are compact UTC timestamps (``20240102T000000``) so the
lexically greatest file name of a kind is the latest one.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

RAW = "raw"
ENRICHED = "enriched"
FAILED_ENRICHED = "failed-enriched"
FAILED_SEED = "failed-seed"


class PersistenceError(RuntimeError):
    """A snapshot could not be found, read or written."""


def run_version(now: datetime | None = None) -> str:
    """Return the sortable version string for a run started at ``now``."""
    moment = now or datetime.now(UTC)
    return moment.strftime("%Y%m%dT%H%M%S")


def snapshot_path(data_dir: Path, kind: str, version: str) -> Path:
    return data_dir / f"{kind}-{version}.json"


def save_snapshot(data_dir: Path, kind: str, version: str, items: list[dict[str, Any]]) -> Path:
    """Write ``items`` as one JSON array and return the file path."""
    path = snapshot_path(data_dir, kind, version)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as fh:
            json.dump(items, fh, indent=2, ensure_ascii=False)
            fh.write("\n")
    except (OSError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Could not write snapshot {path}: {exc}") from exc

    LOGGER.info("Saved %s items to %s", len(items), path)
    return path


def find_latest_snapshot(data_dir: Path, kind: str) -> Path | None:
    """Return the newest ``<kind>-*.json`` file, or None if there is none."""
    if not data_dir.is_dir():
        return None

    prefix = f"{kind}-"
    candidates = sorted(
        path
        for path in data_dir.iterdir()
        if path.is_file()
        and path.name.startswith(prefix)
        and path.suffix == ".json"
        # versions start with the year; skips names like raw-backup.json
        and path.name[len(prefix):len(prefix) + 1].isdigit()
    )
    return candidates[-1] if candidates else None


def load_snapshot(path: Path) -> list[dict[str, Any]]:
    """Read a snapshot file, which must hold a JSON array of objects."""
    try:
        with path.open(encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise PersistenceError(f"Could not read snapshot {path}: {exc}") from exc

    if not isinstance(payload, list):
        raise PersistenceError(f"Snapshot {path} does not contain a JSON array")
    return [item for item in payload if isinstance(item, dict)]


def load_latest_snapshot(data_dir: Path, kind: str) -> tuple[Path, list[dict[str, Any]]]:
    """Find and read the newest snapshot of ``kind``; raise if none exists."""
    path = find_latest_snapshot(data_dir, kind)
    if path is None:
        raise PersistenceError(f"No {kind} snapshot files found in {data_dir}")
    LOGGER.info("Using latest %s snapshot: %s", kind, path)
    return path, load_snapshot(path)
