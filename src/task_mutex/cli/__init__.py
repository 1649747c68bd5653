"""CLI entrypoint for task-mutex."""

from task_mutex.cli.main import build_parser, default_mutex_name, main

__all__ = ["build_parser", "default_mutex_name", "main"]
