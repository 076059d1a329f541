"""Mission decomposition and task execution engine."""

__version__ = "0.1.0"
