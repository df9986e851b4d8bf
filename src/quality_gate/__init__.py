"""Quality compliance gate.

Runs structural, type, lint, test, security, documentation and license
checks against a built package and reduces them to a weighted 0-100 score.
"""

__version__ = "1.0.0"
