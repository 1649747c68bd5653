"""Custom exceptions for task-mutex.

All exception classes carry enough context (lock name, backend, timeout)
for a caller to tell contention apart from a broken backend.
"""

from __future__ import annotations


class TaskMutexError(Exception):
    """Base exception for all task-mutex errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(TaskMutexError):
    """Exception raised for configuration-related errors.

    Examples:
        - Empty lock name
        - Missing directory for the file strategy
        - Non-numeric TTL in the environment
        - Invalid table name
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class UnsupportedStrategy(ConfigurationError):
    """Raised when a configuration names a strategy with no matching backend.

    Attributes:
        strategy: The strategy value as given
        supported: Names the factory accepts
    """

    def __init__(self, strategy: object, supported: list[str] | tuple[str, ...] = ()):
        self.strategy = strategy
        self.supported = tuple(supported)
        details = f"supported strategies: {', '.join(self.supported)}" if self.supported else None
        super().__init__(f"Unsupported lock strategy '{strategy}'", field="strategy", details=details)


class BackendUnavailable(TaskMutexError):
    """Raised when the underlying store is unreachable or unusable.

    Never retried by the lock layer; retry policy belongs to the caller.
    """

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.backend = backend
        self.original_error = original_error
        if details is None and original_error is not None:
            details = str(original_error) or type(original_error).__name__
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.backend:
            parts.append(f"backend {self.backend}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


class LockTimeout(TaskMutexError):
    """Acquisition gave up after its timeout elapsed.

    This is the expected outcome under contention. ``Mutex.acquire`` reports
    it as ``False``; only ``Mutex.hold`` raises it.
    """

    def __init__(self, lock_name: str, timeout: float, attempts: int = 0):
        self.lock_name = lock_name
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Timed out acquiring lock '{lock_name}'",
            f"{attempts} attempt(s) in {timeout:g}s",
        )


class LockNotOwned(TaskMutexError):
    """Raised (or recorded) when the caller's token no longer owns the lock.

    The lease expired and was possibly taken over. The caller must not assume
    it still holds the resource the lock protected.
    """

    def __init__(self, lock_name: str, token: str | None = None, details: str | None = None):
        self.lock_name = lock_name
        self.token = token
        super().__init__(f"Lock '{lock_name}' is not owned by this mutex", details)
