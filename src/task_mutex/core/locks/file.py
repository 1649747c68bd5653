"""Advisory file lock backend (``fcntl.flock``).

Mutual exclusion holds among processes sharing one host and filesystem.
The OS drops the lock when the holder dies, so leases need no TTL.
"""

from __future__ import annotations

import contextlib
import errno
import hashlib
import json
import logging
import os
import re
import socket
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from task_mutex.core.constants import LOCK_FILE_SUFFIX
from task_mutex.core.exceptions import BackendUnavailable
from task_mutex.core.locks.base import SleepingWaitMixin

try:
    import fcntl
except ImportError:  # pragma: no cover - exercised on non-POSIX only
    fcntl = None

logger = logging.getLogger(__name__)

_FLOCK_UNSUPPORTED_ERRNOS = {
    err_no
    for err_no in (
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
        getattr(errno, "ENOSYS", None),
    )
    if err_no is not None
}
_FLOCK_CONTENDED_ERRNOS = {errno.EAGAIN, errno.EWOULDBLOCK}
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def lock_file_name(lock_name: str) -> str:
    """Map a lock name to a file name, keeping distinct names distinct."""
    safe = _UNSAFE_NAME_CHARS.sub("_", lock_name)
    if safe != lock_name or safe.startswith("."):
        digest = hashlib.sha1(lock_name.encode("utf-8")).hexdigest()[:10]
        safe = f"{safe.lstrip('.') or 'lock'}-{digest}"
    return f"{safe}{LOCK_FILE_SUFFIX}"


def _write_all(fd: int, payload: bytes) -> None:
    """Write complete payload to fd, handling short writes."""
    total_written = 0
    while total_written < len(payload):
        written = os.write(fd, payload[total_written:])
        if written <= 0:
            raise OSError("short write while persisting lock metadata")
        total_written += written


@dataclass
class _FileLockHandle:
    lock_path: Path
    fd: int
    token: str


class FileBackend(SleepingWaitMixin):
    """Exclusive ``flock`` on ``<directory>/<name>.lock``."""

    name = "file"
    ttl_supported = False
    default_ttl = None

    def __init__(self, directory: str | os.PathLike, *, remove_on_release: bool = True):
        self.directory = Path(directory)
        self.remove_on_release = remove_on_release
        self._handles: dict[str, _FileLockHandle] = {}

    @staticmethod
    def is_supported() -> bool:
        return fcntl is not None

    def lock_path(self, lock_name: str) -> Path:
        return self.directory / lock_file_name(lock_name)

    def try_acquire(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        del ttl_seconds  # OS-managed lock lifetime.
        if lock_name in self._handles:
            return False

        lock_path = self.lock_path(lock_name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o600)
        except OSError as e:
            raise BackendUnavailable(f"Cannot open lock file '{lock_path}'", backend=self.name, original_error=e) from e

        try:
            locked = self._flock(fd, lock_path, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BackendUnavailable:
            os.close(fd)
            raise
        if not locked:
            os.close(fd)
            return False

        if not self._fd_matches_path(fd, lock_path):
            # A releasing holder unlinked the file between our open and flock.
            self._unlock_and_close(fd)
            return False

        handle = _FileLockHandle(lock_path=lock_path, fd=fd, token=token)
        try:
            self._write_info(handle)
        except OSError as e:
            self._unlock_and_close(fd)
            raise BackendUnavailable(
                f"Cannot write lock metadata to '{lock_path}'", backend=self.name, original_error=e
            ) from e
        self._handles[lock_name] = handle
        return True

    def release(self, lock_name: str, token: str) -> bool:
        handle = self._handles.get(lock_name)
        if handle is None or handle.token != token:
            return False
        del self._handles[lock_name]
        if self.remove_on_release:
            # Unlink while still locked so no new opener can lock the old inode unseen.
            with contextlib.suppress(FileNotFoundError):
                handle.lock_path.unlink()
        self._unlock_and_close(handle.fd)
        return True

    def renew(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        del ttl_seconds
        handle = self._handles.get(lock_name)
        return handle is not None and handle.token == token

    def is_locked(self, lock_name: str) -> bool:
        if lock_name in self._handles:
            return True
        lock_path = self.lock_path(lock_name)
        try:
            fd = os.open(str(lock_path), os.O_RDWR)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackendUnavailable(f"Cannot open lock file '{lock_path}'", backend=self.name, original_error=e) from e
        try:
            if self._flock(fd, lock_path, fcntl.LOCK_EX | fcntl.LOCK_NB):
                fcntl.flock(fd, fcntl.LOCK_UN)
                return False
            return True
        finally:
            os.close(fd)

    def read_info(self, lock_name: str) -> dict[str, Any] | None:
        """Read diagnostic metadata written by the current holder, if any."""
        try:
            with open(self.lock_path(lock_name), encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def close(self) -> None:
        for lock_name, handle in list(self._handles.items()):
            logger.debug("Closing file lock '%s' still held at close", lock_name)
            self.release(lock_name, handle.token)

    def _flock(self, fd: int, lock_path: Path, operation: int) -> bool:
        try:
            assert fcntl is not None  # For type checkers.
            fcntl.flock(fd, operation)
        except BlockingIOError:
            return False
        except OSError as e:
            if e.errno in _FLOCK_CONTENDED_ERRNOS:
                return False
            if e.errno in _FLOCK_UNSUPPORTED_ERRNOS:
                raise BackendUnavailable(
                    f"flock is unsupported for lock path '{lock_path}'", backend=self.name, original_error=e
                ) from e
            raise BackendUnavailable(f"flock failed for '{lock_path}'", backend=self.name, original_error=e) from e
        return True

    @staticmethod
    def _fd_matches_path(fd: int, lock_path: Path) -> bool:
        try:
            path_stat = os.stat(lock_path)
        except FileNotFoundError:
            return False
        fd_stat = os.fstat(fd)
        return (fd_stat.st_dev, fd_stat.st_ino) == (path_stat.st_dev, path_stat.st_ino)

    @staticmethod
    def _unlock_and_close(fd: int) -> None:
        try:
            assert fcntl is not None  # For type checkers.
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError:
            pass
        finally:
            with contextlib.suppress(OSError):
                os.close(fd)

    def _write_info(self, handle: _FileLockHandle) -> None:
        info = {
            "token": handle.token,
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "acquired_at": datetime.now(UTC).isoformat(),
            "backend": self.name,
        }
        payload = (json.dumps(info, sort_keys=True) + "\n").encode("utf-8")
        os.lseek(handle.fd, 0, os.SEEK_SET)
        os.ftruncate(handle.fd, 0)
        _write_all(handle.fd, payload)
