"""Shared constants for the suite build pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Workspace layout
# ---------------------------------------------------------------------------
PACKAGES_DIR = "packages"
PLANS_DIR = "plans/packages"
MANIFEST_FILE = "package.json"
IGNORED_DIRS = frozenset({"node_modules", "dist", ".git", ".turbo", "coverage"})

DEFAULT_NAMESPACE = "@bernierllc/"

# ---------------------------------------------------------------------------
# State persistence
# ---------------------------------------------------------------------------
STATE_DIR = ".suite-builder"
STATE_FILE = "SUITE_STATE.json"
PROPAGATION_LOCK_FILE = "propagation.lock"
FIX_INSTRUCTIONS_FILE = "FIX_INSTRUCTIONS.md"

# ---------------------------------------------------------------------------
# Default toolchain commands
# ---------------------------------------------------------------------------
DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_TEST_COMMAND = "npm test"

# ---------------------------------------------------------------------------
# Compliance weights (must sum to exactly 100)
# ---------------------------------------------------------------------------
WEIGHT_STRUCTURE = 10.0
WEIGHT_TYPE_CHECK = 20.0
WEIGHT_LINT = 15.0
WEIGHT_TESTS = 25.0
WEIGHT_SECURITY = 10.0
WEIGHT_DOCUMENTATION = 10.0
WEIGHT_LICENSE = 10.0

# Level thresholds
THRESHOLD_EXCELLENT = 95.0
THRESHOLD_GOOD = 90.0
THRESHOLD_ACCEPTABLE = 85.0

# ---------------------------------------------------------------------------
# Structural requirements
# ---------------------------------------------------------------------------
REQUIRED_FILES = ("package.json", "README.md")
REQUIRED_MANIFEST_FIELDS = ("name", "version", "description", "main")
REQUIRED_SCRIPTS = ("build", "test")
REQUIRED_README_SECTIONS = ("Installation", "Usage", "API", "License")
REQUIRED_PLAN_SECTIONS: dict[str, tuple[str, ...]] = {
    "Overview": ("overview", "description", "summary"),
    "Requirements": ("requirements", "scope"),
    "Implementation": ("implementation", "tasks"),
    "Testing": ("testing", "tests"),
}
