"""Constants and default values for task-mutex.

This module centralizes the defaults, strategy aliases and environment
variable names used throughout the package.
"""

import os
import tempfile

# ==================== STRATEGIES ====================

# Documented fallback when no strategy is configured at all
DEFAULT_STRATEGY: str = "file"

# Explicit aliases carried over from framework-style configuration values
STRATEGY_ALIASES: dict[str, str] = {
    "flock": "file",
    "mysql": "relational",
    "sql": "relational",
    "sqlite": "relational",
    "database": "relational",
    "redis": "keyvalue",
}

# ==================== LEASE / RETRY DEFAULTS ====================

DEFAULT_LEASE_TTL: float = 30.0  # Seconds before an unreleased lease is stale
DEFAULT_POLL_INTERVAL: float = 0.1  # First wait between acquire attempts
DEFAULT_MAX_POLL_INTERVAL: float = 1.0  # Backoff cap
DEFAULT_ACQUIRE_TIMEOUT: float = 0.0  # Single non-blocking attempt

# ==================== BACKEND DEFAULTS ====================

DEFAULT_LOCK_DIRECTORY: str = os.path.join(tempfile.gettempdir(), "task-mutex")
DEFAULT_TABLE: str = "task_mutexes"
DEFAULT_KEY_PREFIX: str = "mutex:"
RELEASE_CHANNEL_INFIX: str = "released:"
LOCK_FILE_SUFFIX: str = ".lock"

# ==================== CLI EXIT CODES ====================

EXIT_LOCKED: int = 75  # EX_TEMPFAIL
EXIT_UNAVAILABLE: int = 69  # EX_UNAVAILABLE
EXIT_CONFIG: int = 2

# ==================== LOGGING ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB
LOG_FILE_BACKUP_COUNT: int = 5

# ==================== ENVIRONMENT ====================

# MutexConfig field -> environment variable
ENV_VAR_MAPPING: dict[str, str] = {
    "lock_name": "TASK_MUTEX_NAME",
    "strategy": "TASK_MUTEX_STRATEGY",
    "lease_ttl": "TASK_MUTEX_LEASE_TTL",
    "poll_interval": "TASK_MUTEX_POLL_INTERVAL",
    "max_poll_interval": "TASK_MUTEX_MAX_POLL_INTERVAL",
    "timeout": "TASK_MUTEX_TIMEOUT",
    "directory": "TASK_MUTEX_DIRECTORY",
    "table": "TASK_MUTEX_TABLE",
    "connection": "TASK_MUTEX_CONNECTION",
    "key_prefix": "TASK_MUTEX_KEY_PREFIX",
}

NUMERIC_CONFIG_FIELDS: frozenset[str] = frozenset(
    {"lease_ttl", "poll_interval", "max_poll_interval", "timeout"}
)
