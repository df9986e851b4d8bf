"""Command adapter for the external implementation generator.

The generator itself (the agent that writes source files from a plan) is
outside this system; this adapter only launches it and checks that a
manifest for the package exists afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path

from src.shared.utils import unscoped_name
from src.suite_builder.executor import run_command
from src.suite_builder.resolver import read_manifest
from src.suite_builder.exceptions import ManifestError
from src.suite_shared.constants import MANIFEST_FILE, PACKAGES_DIR
from src.suite_shared.utils import iter_manifests

logger = logging.getLogger(__name__)


class CommandImplementationGenerator:
    """Runs ``command`` with ``{package}``, ``{plan}`` and ``{workspace}`` substituted."""

    def __init__(self, command: str, timeout_s: int = 3600) -> None:
        self.command = command
        self.timeout_s = timeout_s

    async def generate(self, name: str, plan_path: str, workspace_root: Path) -> bool:
        argv = [
            part.format(package=name, plan=plan_path, workspace=str(workspace_root))
            for part in self.command.split()
        ]
        result = await run_command(argv, workspace_root, self.timeout_s)
        if not result.success:
            logger.error(
                "Implementation generator failed for %s (exit %d): %s",
                name, result.exit_code, result.output.strip()[-500:],
            )
            return False
        if not manifest_exists(workspace_root, name):
            logger.error("Implementation generator wrote no %s for %s", MANIFEST_FILE, name)
            return False
        return True


def manifest_exists(workspace_root: Path, name: str) -> bool:
    """True when some manifest under ``packages/`` declares *name*."""
    conventional = workspace_root / PACKAGES_DIR / unscoped_name(name) / MANIFEST_FILE
    candidates = [conventional] if conventional.is_file() else []
    candidates.extend(iter_manifests(workspace_root / PACKAGES_DIR))
    for path in candidates:
        try:
            if read_manifest(path)["name"] == name:
                return True
        except ManifestError:
            continue
    return False
