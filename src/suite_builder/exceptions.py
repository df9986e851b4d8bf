"""Custom exceptions for the suite build pipeline."""

from __future__ import annotations


class SuiteBuildError(Exception):
    """Base exception for all suite build errors."""

    pass


class DependencyCycleError(SuiteBuildError):
    """Raised when dependency resolution reaches an ancestor again."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.cycle))


class ManifestError(SuiteBuildError):
    """Raised when a package manifest is missing or malformed."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid manifest {path}: {reason}")


class InvalidVersionError(SuiteBuildError, ValueError):
    """Raised for malformed versions or unknown bump classes."""

    pass


class ConfigurationError(SuiteBuildError):
    """Raised for configuration issues (bad YAML, missing settings)."""

    pass
