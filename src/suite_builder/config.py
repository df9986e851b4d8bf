"""Configuration dataclasses and loader for the suite builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.suite_builder.exceptions import ConfigurationError
from src.suite_shared.constants import DEFAULT_NAMESPACE


@dataclass
class ResolverConfig:
    """How packages are located in the workspace."""

    namespace: str = DEFAULT_NAMESPACE
    packages_dir: str = "packages"
    plans_dir: str = "plans/packages"


@dataclass
class PlanWaitConfig:
    """Backoff for polling the registry while a plan is written."""

    base_delay: float = 5.0
    factor: float = 1.5
    max_delay: float = 60.0
    max_attempts: int = 20
    max_rounds: int = 3


@dataclass
class ExecutorConfig:
    """Subprocess bounds for package toolchain commands."""

    build_timeout: int = 600
    test_timeout: int = 900
    check_timeout: int = 300


@dataclass
class QualityConfig:
    """Compliance gate settings."""

    write_fix_instructions: bool = True
    run_security_audit: bool = True


@dataclass
class PublishConfig:
    """Registry publish settings."""

    visibility: str = "restricted"
    dry_run: bool = False
    bump: str = "patch"


@dataclass
class SuiteBuilderConfig:
    """Top-level configuration composing all sub-configs."""

    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    plan_wait: PlanWaitConfig = field(default_factory=PlanWaitConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    workspace_root: str = "."
    state_dir: str = ".suite-builder"


_SECTIONS: dict[str, type] = {
    "resolver": ResolverConfig,
    "plan_wait": PlanWaitConfig,
    "executor": ExecutorConfig,
    "quality": QualityConfig,
    "publish": PublishConfig,
}


def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid}


def load_suite_config(path: Path | str | None = None) -> SuiteBuilderConfig:
    """Load suite builder configuration from a YAML file.

    Missing sections fall back to defaults.  Unknown keys are silently
    ignored so that forward-compatible config files work.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, returns full defaults.

    Returns:
        Populated configuration dataclass.

    Raises:
        ConfigurationError: If the file is not valid YAML or a value is
            out of range.
    """
    if path is None:
        return SuiteBuilderConfig()

    path = Path(path)
    if not path.exists():
        return SuiteBuilderConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    top_level = _pick(raw, SuiteBuilderConfig)
    sections: dict[str, Any] = {}
    for key, cls in _SECTIONS.items():
        top_level.pop(key, None)
        sections[key] = cls(**_pick(raw.get(key) or {}, cls))

    cfg = SuiteBuilderConfig(**sections, **top_level)
    _validate(cfg)
    return cfg


def _validate(cfg: SuiteBuilderConfig) -> None:
    if cfg.publish.visibility not in ("public", "restricted"):
        raise ConfigurationError(
            f"publish.visibility must be 'public' or 'restricted', got {cfg.publish.visibility!r}"
        )
    if cfg.publish.bump not in ("major", "minor", "patch"):
        raise ConfigurationError(f"publish.bump must be major, minor or patch, got {cfg.publish.bump!r}")
    if cfg.plan_wait.factor < 1.0:
        raise ConfigurationError("plan_wait.factor must be >= 1.0")
    if cfg.plan_wait.max_attempts < 1:
        raise ConfigurationError("plan_wait.max_attempts must be >= 1")
