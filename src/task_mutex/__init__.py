"""
task-mutex - named mutual exclusion for independent processes and hosts

Lets periodic or concurrent jobs coordinate through a shared filesystem,
relational database or Redis so that at most one holder of a lock name
runs at a time.
"""

from task_mutex.core import (
    BackendUnavailable,
    ConfigurationError,
    LockNotOwned,
    LockTimeout,
    MutexConfig,
    TaskMutexError,
    UnsupportedStrategy,
    __version__,
)
from task_mutex.core.locks import (
    AcquireResult,
    AcquireStatus,
    BackendSettings,
    LeaseState,
    LockStrategy,
    Mutex,
    create_lock_backend,
)

__all__ = [
    "AcquireResult",
    "AcquireStatus",
    "BackendSettings",
    "BackendUnavailable",
    "ConfigurationError",
    "LeaseState",
    "LockNotOwned",
    "LockStrategy",
    "LockTimeout",
    "Mutex",
    "MutexConfig",
    "TaskMutexError",
    "UnsupportedStrategy",
    "__version__",
    "create_lock_backend",
]
