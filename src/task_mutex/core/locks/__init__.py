"""Locking subsystem for cross-process and cross-host coordination.

This package centralizes lock acquisition/release behind backend
abstractions so callers use one stable API whatever the store.
"""

from task_mutex.core.locks.base import (
    AcquireResult,
    AcquireStatus,
    LeaseState,
    LockBackend,
    generate_owner_token,
)
from task_mutex.core.locks.factory import BackendSettings, LockStrategy, create_lock_backend
from task_mutex.core.locks.file import FileBackend
from task_mutex.core.locks.keyvalue import KeyValueBackend, PubSubBackend
from task_mutex.core.locks.mutex import Mutex
from task_mutex.core.locks.relational import RelationalBackend

__all__ = [
    "AcquireResult",
    "AcquireStatus",
    "BackendSettings",
    "FileBackend",
    "KeyValueBackend",
    "LeaseState",
    "LockBackend",
    "LockStrategy",
    "Mutex",
    "PubSubBackend",
    "RelationalBackend",
    "create_lock_backend",
    "generate_owner_token",
]
