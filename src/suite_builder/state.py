"""Suite run state persistence with atomic writes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.suite_shared.constants import STATE_DIR, STATE_FILE
from src.suite_shared.utils import atomic_write_json, load_json

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1


@dataclass
class SuiteState:
    """Progress of one suite run.

    Persisted to ``SUITE_STATE.json`` after every package step.  Build,
    test and verify are safe to repeat after a crash; ``pending_publish``
    records the version a package was about to be published at so a
    restart reuses it instead of bumping again.  ``unrecorded_publish``
    holds versions that reached the registry transport but could not be
    recorded in the package registry; the next run records them without
    publishing again.
    """

    suite_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    roots: list[str] = field(default_factory=list)
    workspace_root: str = "."
    current_package: str = ""
    package_states: dict[str, str] = field(default_factory=dict)
    pending_publish: dict[str, str] = field(default_factory=dict)
    unrecorded_publish: dict[str, str] = field(default_factory=dict)
    published_versions: dict[str, str] = field(default_factory=dict)
    version_changes: list[dict[str, Any]] = field(default_factory=list)
    outcomes: dict[str, dict[str, Any]] = field(default_factory=dict)
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    updated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    interrupted: bool = False
    interrupt_reason: str = ""
    completed: bool = False
    schema_version: int = _SCHEMA_VERSION
    state_dir: str = field(default="", repr=False)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("state_dir", None)
        return data

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to the directory the
                       state was loaded from, then ``.suite-builder``.

        Returns:
            The path the state was written to.
        """
        directory = Path(directory or self.state_dir or STATE_DIR)
        target = directory / STATE_FILE
        self.updated_at = datetime.now(timezone.utc).isoformat()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(cls, directory: Path | str | None = None) -> SuiteState | None:
        """Load state from a JSON file.

        Returns:
            Reconstructed ``SuiteState``, or ``None`` if the file is missing,
            invalid, or written by a newer schema.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        data = load_json(directory / STATE_FILE)
        if data is None:
            return None
        if data.get("schema_version", 0) > _SCHEMA_VERSION:
            logger.warning(
                "Ignoring suite state with schema_version=%s (supported: %d)",
                data.get("schema_version"), _SCHEMA_VERSION,
            )
            return None
        # Filter to only known fields
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        state = cls(**filtered)
        state.state_dir = str(directory)
        return state

    @classmethod
    def clear(cls, directory: Path | str | None = None) -> None:
        """Remove the persisted state file if it exists."""
        directory = Path(directory) if directory else Path(STATE_DIR)
        target = directory / STATE_FILE
        if target.exists():
            target.unlink()
