"""Core module - Foundation components shared by the lock layer and the CLI.

- Version information
- Custom exceptions
- Configuration dataclass
- Constants and defaults
- Logging helpers
"""

from task_mutex.core.version import __version__

from task_mutex.core.exceptions import (
    TaskMutexError,
    ConfigurationError,
    UnsupportedStrategy,
    BackendUnavailable,
    LockTimeout,
    LockNotOwned,
)

from task_mutex.core.config import MutexConfig

from task_mutex.core.logging import setup_logging, with_log_context

__all__ = [
    # Version
    '__version__',
    # Exceptions
    'TaskMutexError',
    'ConfigurationError',
    'UnsupportedStrategy',
    'BackendUnavailable',
    'LockTimeout',
    'LockNotOwned',
    # Config
    'MutexConfig',
    # Logging
    'setup_logging',
    'with_log_context',
]
