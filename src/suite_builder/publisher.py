"""Publish coordinator -- version arithmetic, registry publish, propagation.

* :func:`bump_version` is pure semantic-version arithmetic with npm's
  prerelease rules (``1.0.0-alpha.1`` + patch -> ``1.0.0``).
* :meth:`PublishCoordinator.publish` rewrites the manifest version and hands
  the package directory to a :class:`PublishTransport`.
* :meth:`PublishCoordinator.publish_guarded` asks the registry first and
  never publishes the same name/version twice.
* :meth:`PublishCoordinator.propagate_to_dependents` rewrites every manifest
  in the workspace that depends on the published package.  Every manifest
  rewrite, by publish or by propagation, holds the workspace ``fcntl`` lock.
"""

from __future__ import annotations

import asyncio
import fcntl
import os
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable

from src.suite_builder.config import PublishConfig
from src.suite_builder.exceptions import InvalidVersionError, ManifestError
from src.suite_builder.executor import run_command
from src.suite_builder.resolver import read_manifest
from src.suite_shared.constants import MANIFEST_FILE, PROPAGATION_LOCK_FILE, STATE_DIR
from src.suite_shared.models import BumpType, DependentUpdate
from src.suite_shared.utils import atomic_write_json, iter_manifests

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
_DEPENDENCY_SECTIONS = ("dependencies", "devDependencies")
_RANGE_PREFIXES = ("^", "~")


# ---------------------------------------------------------------------------
# Version arithmetic
# ---------------------------------------------------------------------------


def parse_version(version: str) -> tuple[int, int, int, str]:
    """Split *version* into ``(major, minor, patch, prerelease)``.

    Raises:
        InvalidVersionError: If *version* is not a semantic version.
    """
    match = _SEMVER_RE.match(version.strip())
    if not match:
        raise InvalidVersionError(f"Invalid semver version: {version}")
    major, minor, patch, pre = match.groups()
    return int(major), int(minor), int(patch), pre or ""


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as *a* is lower than, equal to or higher than *b*.

    A prerelease sorts below its release; prerelease tags compare as strings.
    """
    pa, pb = parse_version(a), parse_version(b)
    if pa[:3] != pb[:3]:
        return -1 if pa[:3] < pb[:3] else 1
    if pa[3] == pb[3]:
        return 0
    if not pa[3]:
        return 1
    if not pb[3]:
        return -1
    return -1 if pa[3] < pb[3] else 1


def bump_version(current: str, change_type: str | BumpType) -> str:
    """Compute the next version.

    Args:
        current: The current semantic version.
        change_type: ``major``, ``minor`` or ``patch``.

    Returns:
        The bumped version string.

    Raises:
        InvalidVersionError: For an empty or malformed *current* or an
            unknown *change_type*.
    """
    if current is None or not str(current).strip():
        raise InvalidVersionError("current version cannot be empty")
    try:
        bump = BumpType(change_type)
    except ValueError:
        raise InvalidVersionError(f"Invalid change type: {change_type}") from None

    major, minor, patch, pre = parse_version(str(current))
    if bump == BumpType.MAJOR:
        if pre and minor == 0 and patch == 0:
            return f"{major}.0.0"
        return f"{major + 1}.0.0"
    if bump == BumpType.MINOR:
        if pre and patch == 0:
            return f"{major}.{minor}.0"
        return f"{major}.{minor + 1}.0"
    if pre:
        return f"{major}.{minor}.{patch}"
    return f"{major}.{minor}.{patch + 1}"


def classify_bump(previous: str, new: str) -> BumpType | None:
    """Which component changed between *previous* and *new*; None if unknown."""
    try:
        old_parts, new_parts = parse_version(previous), parse_version(new)
    except InvalidVersionError:
        return None
    if new_parts[0] != old_parts[0]:
        return BumpType.MAJOR
    if new_parts[1] != old_parts[1]:
        return BumpType.MINOR
    if new_parts[2] != old_parts[2] or old_parts[3] != new_parts[3]:
        return BumpType.PATCH
    return None


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@dataclass
class TransportResult:
    success: bool
    registry_url: str = ""
    output: str = ""


@runtime_checkable
class PublishTransport(Protocol):
    """Pushes a package directory to the package registry."""

    async def publish(self, package_dir: Path, visibility: str, dry_run: bool) -> TransportResult:
        ...


class NpmPublishTransport:
    """Publishes with ``npm publish``."""

    def __init__(self, registry_url: str = "https://registry.npmjs.org", timeout_s: int = 300) -> None:
        self.registry_url = registry_url.rstrip("/")
        self.timeout_s = timeout_s

    async def publish(self, package_dir: Path, visibility: str, dry_run: bool) -> TransportResult:
        argv = ["npm", "publish", f"--access={visibility}"]
        if dry_run:
            argv.append("--dry-run")
        # Unfiltered environment: npm reads its auth token from it.
        result = await run_command(argv, package_dir, self.timeout_s, env=dict(os.environ))
        if not result.success:
            return TransportResult(success=False, output=result.output)
        name = read_manifest(package_dir / MANIFEST_FILE)["name"]
        return TransportResult(
            success=True,
            registry_url=f"{self.registry_url}/{name}",
            output=result.output,
        )


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


@dataclass
class PublishResult:
    success: bool
    package_name: str = ""
    published_version: str = ""
    registry_url: str = ""
    error: str = ""
    already_published: bool = False


@contextmanager
def workspace_lock(workspace_root: Path) -> Iterator[None]:
    """Hold the workspace-wide propagation lock for the duration of the context."""
    lock_path = workspace_root / STATE_DIR / PROPAGATION_LOCK_FILE
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _rewrite_spec(old_spec: str, new_version: str) -> str | None:
    """New dependency spec for *old_spec*, or ``None`` to leave it alone."""
    if old_spec.startswith(("workspace:", "file:", "link:")):
        return None
    prefix = old_spec[0] if old_spec[:1] in _RANGE_PREFIXES else ""
    return f"{prefix}{new_version}"


class PublishCoordinator:
    """Publishes packages and keeps dependents pointed at new versions."""

    def __init__(
        self,
        workspace_root: Path | str,
        registry: Any = None,
        transport: PublishTransport | None = None,
        config: PublishConfig | None = None,
        packages_dir: str = "packages",
    ) -> None:
        self.workspace_root = Path(workspace_root)
        self.registry = registry
        self.transport = transport or NpmPublishTransport()
        self.config = config or PublishConfig()
        self.packages_dir = packages_dir

    def _package_dir(self, path: Path | str) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.workspace_root / path

    def _set_manifest_version(self, manifest_path: Path, version: str) -> tuple[str, str]:
        """Write *version* into the manifest; returns ``(name, previous_version)``.

        Runs under the workspace lock so it never interleaves with a
        propagation rewriting the same manifest.
        """
        with workspace_lock(self.workspace_root):
            manifest = read_manifest(manifest_path)
            previous = manifest.get("version", "")
            manifest["version"] = version
            atomic_write_json(manifest_path, manifest)
        return manifest["name"], previous

    async def publish(
        self,
        path: Path | str,
        version: str,
        visibility: str | None = None,
        dry_run: bool | None = None,
    ) -> PublishResult:
        """Set the manifest version to *version* and publish the package."""
        parse_version(version)
        visibility = visibility or self.config.visibility
        dry_run = self.config.dry_run if dry_run is None else dry_run
        package_dir = self._package_dir(path)
        manifest_path = package_dir / MANIFEST_FILE

        try:
            name, previous = await asyncio.to_thread(self._set_manifest_version, manifest_path, version)
        except ManifestError as exc:
            return PublishResult(success=False, error=str(exc))

        try:
            result = await self.transport.publish(package_dir, visibility, dry_run)
        except Exception as exc:
            logger.exception("Publish transport raised for %s@%s", name, version)
            result = TransportResult(success=False, output=str(exc))
        finally:
            if dry_run:
                await asyncio.to_thread(self._set_manifest_version, manifest_path, previous)

        if not result.success:
            logger.warning("Publish of %s@%s rejected", name, version)
            return PublishResult(
                success=False,
                package_name=name,
                error=result.output.strip()[-2000:] or "publish failed",
            )
        logger.info("Published %s@%s (%s%s)", name, version, visibility, ", dry run" if dry_run else "")
        return PublishResult(
            success=True,
            package_name=name,
            published_version=version,
            registry_url=result.registry_url,
        )

    async def publish_guarded(
        self,
        name: str,
        path: Path | str,
        version: str,
        visibility: str | None = None,
        dry_run: bool | None = None,
    ) -> PublishResult:
        """Publish unless the registry already has *name* at *version*.

        When the registry cannot be asked, nothing is published: a second
        publish of the same version is the one unsafe retry in the pipeline.
        """
        if self.registry is not None:
            try:
                record = await self.registry.get(name)
            except Exception as exc:
                logger.warning("Cannot verify publish status of %s: %s", name, exc)
                return PublishResult(
                    success=False,
                    package_name=name,
                    error=f"cannot verify publish status: {exc}",
                )
            if record is not None and record.is_published and record.version == version:
                logger.info("%s@%s is already published; skipping publish", name, version)
                return PublishResult(
                    success=True,
                    package_name=name,
                    published_version=version,
                    already_published=True,
                )
        return await self.publish(path, version, visibility, dry_run)

    async def propagate_to_dependents(
        self,
        name: str,
        new_version: str,
        workspace_root: Path | str | None = None,
    ) -> list[DependentUpdate]:
        """Point every workspace dependent of *name* at *new_version*.

        Scans all manifests under the packages tree and rewrites matching
        entries in ``dependencies`` and ``devDependencies``, keeping any
        ``^``/``~`` range prefix.
        """
        root = Path(workspace_root) if workspace_root is not None else self.workspace_root
        return await asyncio.to_thread(self._propagate_locked, name, new_version, root)

    def _propagate_locked(self, name: str, new_version: str, root: Path) -> list[DependentUpdate]:
        updates: list[DependentUpdate] = []
        with workspace_lock(root):
            for manifest_path in iter_manifests(root / self.packages_dir):
                try:
                    manifest = read_manifest(manifest_path)
                except ManifestError as exc:
                    logger.warning("Propagation skipped %s", exc)
                    continue
                if manifest["name"] == name:
                    continue
                changed = False
                for section in _DEPENDENCY_SECTIONS:
                    deps = manifest.get(section) or {}
                    if name not in deps:
                        continue
                    old_spec = str(deps[name])
                    new_spec = _rewrite_spec(old_spec, new_version)
                    if new_spec is None or new_spec == old_spec:
                        continue
                    deps[name] = new_spec
                    changed = True
                    updates.append(DependentUpdate(
                        package_name=manifest["name"],
                        manifest_path=manifest_path.relative_to(root).as_posix(),
                        field=section,
                        old_spec=old_spec,
                        new_spec=new_spec,
                    ))
                if changed:
                    atomic_write_json(manifest_path, manifest)

        logger.info(
            "Propagated %s@%s to %d dependent manifest entr%s",
            name, new_version, len(updates), "y" if len(updates) == 1 else "ies",
        )
        return updates
