"""Shared constants used across all processes."""
from __future__ import annotations

# Application version
VERSION: str = "1.0.0"

# Port numbers
PLAN_SERVICE_PORT: int = 8010

# Service names
PLAN_SERVICE_NAME: str = "plan-coordination"
SUITE_BUILDER_SERVICE_NAME: str = "suite-builder"

# Registry record statuses
STATUS_PLAN_NEEDED: str = "plan_needed"
STATUS_PLANNING: str = "planning"
STATUS_PLAN_WRITTEN: str = "plan_written"
STATUS_PUBLISHED: str = "published"

# Environment keys never forwarded to package toolchains
SECRET_ENV_KEYS: frozenset[str] = frozenset({
    "REGISTRY_API_KEY",
    "NPM_TOKEN",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "AWS_SECRET_ACCESS_KEY",
})
