"""Suite Build Orchestrator: resolve, build, verify, publish, propagate."""

__version__ = "1.0.0"
