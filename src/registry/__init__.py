"""Client for the package metadata registry."""

__version__ = "1.0.0"
