"""Shared domain models, protocols, constants, and utilities for the suite builder.

This package is the foundation for ``registry``, ``quality_gate``,
``suite_builder`` and ``plan_service``.  It sits beside ``src/shared/``,
which holds process infrastructure rather than domain types.
"""

__version__ = "1.0.0"
