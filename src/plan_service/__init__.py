"""Plan Coordination Service: a long-running, priority-queued plan scheduler."""

__version__ = "1.0.0"
