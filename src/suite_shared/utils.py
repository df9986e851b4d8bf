"""Shared utility functions for the suite build pipeline."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterator

from src.suite_shared.constants import IGNORED_DIRS, MANIFEST_FILE


def atomic_write_json(path: Path | str, data: Any) -> None:
    """Write JSON data atomically by writing to a temp file then renaming.

    Args:
        path: Target file path.
        data: JSON-serialisable data to write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(path))
    except BaseException:
        # Clean up temp file on any failure
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def load_json(path: Path | str) -> dict | None:
    """Load JSON data from a file.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON data, or None if the file is missing, invalid, or not
        a JSON object.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def iter_files(root: Path, pattern: str) -> Iterator[Path]:
    """Yield files under *root* matching *pattern*, skipping build output.

    Results are sorted so repeated scans visit files in the same order.
    """
    if not root.is_dir():
        return
    for path in sorted(root.rglob(pattern)):
        rel_parts = path.relative_to(root).parts
        if any(part in IGNORED_DIRS for part in rel_parts):
            continue
        if path.is_file():
            yield path


def iter_manifests(packages_root: Path) -> Iterator[Path]:
    """Yield every ``package.json`` under *packages_root*."""
    yield from iter_files(packages_root, MANIFEST_FILE)
