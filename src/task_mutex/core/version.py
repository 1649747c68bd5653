"""Version information for task-mutex."""

__version__ = "1.0.0"
