"""Mutex facade binding one lock name to one backend."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from task_mutex.core.config import MutexConfig
from task_mutex.core.constants import DEFAULT_LEASE_TTL, DEFAULT_MAX_POLL_INTERVAL, DEFAULT_POLL_INTERVAL
from task_mutex.core.exceptions import ConfigurationError, LockNotOwned, LockTimeout, TaskMutexError
from task_mutex.core.locks.base import (
    AcquireResult,
    AcquireStatus,
    LeaseState,
    LockBackend,
    backoff_delays,
    generate_owner_token,
)
from task_mutex.core.locks.factory import BackendSettings, create_lock_backend
from task_mutex.core.logging import with_log_context


class Mutex:
    """Uniform acquire/release/renew API over any ``LockBackend``.

    A Mutex holds at most one lease at a time and owns its backend: closing
    the Mutex (explicitly or by leaving a ``with`` block) releases any lease
    and closes the backend's connection or file handles.
    """

    def __init__(
        self,
        name: str,
        backend: LockBackend,
        *,
        lease_ttl: float | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_interval: float = DEFAULT_MAX_POLL_INTERVAL,
        logger: logging.Logger | None = None,
    ):
        if not name or not name.strip():
            raise ConfigurationError("Lock name must not be empty", field="lock_name")
        self.name = name
        self.backend = backend
        if lease_ttl is None:
            backend_ttl = getattr(backend, "default_ttl", None)
            lease_ttl = backend_ttl if isinstance(backend_ttl, (int, float)) else DEFAULT_LEASE_TTL
        self.lease_ttl = lease_ttl
        self.poll_interval = poll_interval
        self.max_poll_interval = max(max_poll_interval, poll_interval)
        self.logger = with_log_context(
            logger or logging.getLogger(__name__), lock_name=name, strategy=getattr(backend, "name", None)
        )
        self.last_error: TaskMutexError | None = None

        self._lease: LeaseState | None = None
        self._state_lock = threading.RLock()
        self._closed = False

    @classmethod
    def from_config(
        cls, config: MutexConfig, *, connection: Any = None, logger: logging.Logger | None = None
    ) -> Mutex:
        """Build the backend named by ``config`` and bind it to ``config.lock_name``."""
        config.validate()
        backend = create_lock_backend(
            config.strategy,
            BackendSettings.from_config(config, connection=connection),
            logger=logger,
        )
        return cls(
            config.lock_name,
            backend,
            lease_ttl=config.lease_ttl,
            poll_interval=config.poll_interval,
            max_poll_interval=config.max_poll_interval,
            logger=logger,
        )

    @property
    def lease(self) -> LeaseState | None:
        with self._state_lock:
            return self._lease

    @property
    def is_acquired(self) -> bool:
        with self._state_lock:
            return self._lease is not None and not self._lease.is_expired

    def _ttl(self, seconds: float | None) -> float | None:
        return seconds if self.backend.ttl_supported else None

    def acquire(self, timeout: float = 0.0) -> bool:
        """Try to obtain the lock, blocking up to ``timeout`` seconds (0 = one attempt)."""
        return self.acquire_result(timeout).acquired

    def acquire_result(self, timeout: float = 0.0) -> AcquireResult:
        """Like ``acquire`` but reports attempts, wait time and the timeout error.

        Backend failures raise ``BackendUnavailable`` instead of being folded
        into a timeout.
        """
        if timeout < 0:
            raise ConfigurationError("timeout must not be negative", field="timeout", details=str(timeout))
        with self._state_lock:
            if self._closed:
                raise TaskMutexError(f"Mutex '{self.name}' is closed")
            if self._lease is not None and not self._lease.is_expired:
                return AcquireResult(status=AcquireStatus.ACQUIRED, lease=self._lease)
            self._lease = None

        token = generate_owner_token()
        ttl = self._ttl(self.lease_ttl)
        started = time.monotonic()
        deadline = started + timeout
        delays = backoff_delays(self.poll_interval, self.max_poll_interval)
        attempts = 0
        try:
            while True:
                attempts += 1
                if self.backend.try_acquire(self.name, token, ttl):
                    lease = LeaseState(
                        name=self.name,
                        token=token,
                        acquired_at=datetime.now(UTC),
                        ttl_seconds=ttl,
                        backend=self.backend.name,
                    )
                    with self._state_lock:
                        self._lease = lease
                        self.last_error = None
                    self.logger.debug("Acquired lock after %d attempt(s)", attempts)
                    return AcquireResult(
                        status=AcquireStatus.ACQUIRED,
                        lease=lease,
                        attempts=attempts,
                        waited_seconds=time.monotonic() - started,
                    )

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.backend.wait(self.name, min(next(delays), remaining))
        finally:
            self.backend.stop_waiting(self.name)

        error = LockTimeout(self.name, timeout, attempts)
        with self._state_lock:
            self.last_error = error
        self.logger.debug("Lock busy after %d attempt(s)", attempts)
        return AcquireResult(
            status=AcquireStatus.TIMEOUT,
            attempts=attempts,
            waited_seconds=time.monotonic() - started,
            error=error,
        )

    def release(self) -> bool:
        """Release the held lease. False if none is held or it was lost to expiry/takeover.

        If the backend raises, the lease is kept so a later ``release()`` or
        ``close()`` can retry with the same token.
        """
        with self._state_lock:
            lease = self._lease
        if lease is None:
            return False

        released = self.backend.release(self.name, lease.token)
        with self._state_lock:
            if self._lease is lease:
                self._lease = None
        if released:
            self.logger.debug("Released lock")
            return True

        error = LockNotOwned(self.name, lease.token, details="lease expired or was taken over before release")
        with self._state_lock:
            self.last_error = error
        self.logger.warning("Lock was no longer owned at release; another holder may be running")
        return False

    def is_locked(self) -> bool:
        """Best-effort check whether anyone holds the lock right now."""
        return self.backend.is_locked(self.name)

    def renew(self, extension: float | None = None) -> bool:
        """Extend the held lease to ``extension`` seconds from now (default: lease_ttl).

        Raises:
            LockNotOwned: no lease is held, or the backend says it was lost.
        """
        with self._state_lock:
            lease = self._lease
            if lease is None:
                raise LockNotOwned(self.name, details="no lease held")

            ttl = self._ttl(extension if extension is not None else self.lease_ttl)
            if ttl is not None and ttl <= 0:
                raise ConfigurationError("extension must be positive", field="extension", details=str(extension))

            if not self.backend.renew(self.name, lease.token, ttl):
                self._lease = None
                error = LockNotOwned(self.name, lease.token, details="lease expired or was taken over")
                self.last_error = error
                self.logger.warning("Lock lost before renewal")
                raise error

            if ttl is not None:
                self._lease = lease.renewed(ttl)
            return True

    @contextlib.contextmanager
    def hold(self, timeout: float = 0.0) -> Iterator[LeaseState]:
        """Hold the lock for the duration of a ``with`` block.

        Raises:
            LockTimeout: the lock could not be acquired within ``timeout``.
        """
        result = self.acquire_result(timeout)
        if not result.acquired:
            assert result.error is not None
            raise result.error
        try:
            yield result.lease
        finally:
            self.release()

    def close(self) -> None:
        """Release any lease and close the backend. Safe to call twice."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        try:
            if self._lease is not None:
                self.release()
        finally:
            self.backend.close()

    def __enter__(self) -> Mutex:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "locked" if self.is_acquired else "unlocked"
        return f"Mutex(name={self.name!r}, backend={self.backend.name!r}, {state})"
