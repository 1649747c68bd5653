"""Shared lock types and the backend contract.

Design principles:
- Ownership is defined by backend state (OS lock, table row, key value).
- A lease's owner token is the only proof of ownership; release and renew
  always compare it against the store before mutating anything.
- Contention is a failed attempt, never an exception. Anything else the
  store reports surfaces as ``BackendUnavailable``.
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Iterator
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from task_mutex.core.exceptions import LockTimeout


def generate_owner_token() -> str:
    """Return a fresh, unique owner token for one acquisition."""
    return uuid.uuid4().hex


def backoff_delays(
    poll_interval: float, max_poll_interval: float, *, jitter: bool = True
) -> Iterator[float]:
    """Yield bounded exponential delays between acquire attempts.

    Delays double from ``poll_interval`` up to ``max_poll_interval``. Jitter
    scales each delay by 0.5-1.5 so waiters do not retry in lockstep.
    """
    delay = poll_interval
    while True:
        yield delay * random.uniform(0.5, 1.5) if jitter else delay
        delay = min(delay * 2, max_poll_interval)


@dataclass(frozen=True)
class LeaseState:
    """A held lease: which token owns which name, and until when."""

    name: str
    token: str
    acquired_at: datetime
    ttl_seconds: float | None
    backend: str

    @property
    def expires_at(self) -> datetime | None:
        if self.ttl_seconds is None:
            return None
        return self.acquired_at + timedelta(seconds=self.ttl_seconds)

    @property
    def remaining_seconds(self) -> float | None:
        expires_at = self.expires_at
        if expires_at is None:
            return None
        return max(0.0, (expires_at - datetime.now(UTC)).total_seconds())

    @property
    def is_expired(self) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and datetime.now(UTC) >= expires_at

    def renewed(self, ttl_seconds: float | None) -> LeaseState:
        """Lease with the same token and a deadline ``ttl_seconds`` from now."""
        return replace(self, acquired_at=datetime.now(UTC), ttl_seconds=ttl_seconds)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["acquired_at"] = self.acquired_at.isoformat()
        expires_at = self.expires_at
        data["expires_at"] = expires_at.isoformat() if expires_at else None
        return data


class AcquireStatus(Enum):
    ACQUIRED = "acquired"
    TIMEOUT = "timeout"


@dataclass
class AcquireResult:
    """Outcome of one ``Mutex.acquire_result`` call."""

    status: AcquireStatus
    lease: LeaseState | None = None
    attempts: int = 0
    waited_seconds: float = 0.0
    error: LockTimeout | None = None

    @property
    def acquired(self) -> bool:
        return self.status == AcquireStatus.ACQUIRED


class LockBackend(Protocol):
    """Closed contract every storage backend implements.

    All operations are scoped to ``lock_name``; backends may share their
    store with unrelated names and must never touch them.
    """

    name: str
    ttl_supported: bool
    default_ttl: float | None

    def try_acquire(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        """Make one non-blocking attempt. True if ``token`` now owns the lock."""

    def release(self, lock_name: str, token: str) -> bool:
        """Compare-and-delete. True only if ``token`` still owned the lock."""

    def renew(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        """Push the deadline to ``ttl_seconds`` from now if ``token`` still owns it."""

    def is_locked(self, lock_name: str) -> bool:
        """Best-effort, read-only query of the current state."""

    def wait(self, lock_name: str, seconds: float) -> None:
        """Suspend between attempts for at most ``seconds``."""

    def stop_waiting(self, lock_name: str) -> None:
        """Drop any resources ``wait`` set up for ``lock_name``."""

    def close(self) -> None:
        """Release the backend's handle. Idempotent."""


class SleepingWaitMixin:
    """Plain polling: ``wait`` just sleeps."""

    def wait(self, lock_name: str, seconds: float) -> None:
        del lock_name
        if seconds > 0:
            time.sleep(seconds)

    def stop_waiting(self, lock_name: str) -> None:
        del lock_name
