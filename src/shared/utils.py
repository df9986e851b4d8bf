"""Shared utility functions."""
from datetime import datetime, timezone


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def unscoped_name(name: str) -> str:
    """Strip an npm-style ``@scope/`` prefix from a package name."""
    return name.split("/", 1)[1] if name.startswith("@") and "/" in name else name
