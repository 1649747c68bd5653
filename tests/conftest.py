"""Pytest configuration and fixtures for task-mutex tests"""

from __future__ import annotations

import queue
import sqlite3
import threading
import time
from pathlib import Path

import pytest
import redis

from task_mutex.core.locks import keyvalue as keyvalue_module


class FakeClock:
    """Manually advanced epoch clock for TTL tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePubSub:
    """Queue-backed subscription that, like redis-py, delivers a subscribe
    confirmation first and hands back None for it when ignoring them."""

    def __init__(self, server: FakeRedis, ignore_subscribe_messages: bool = False):
        self._server = server
        self.ignore_subscribe_messages = ignore_subscribe_messages
        self._queue: queue.Queue = queue.Queue()
        self._channels: list[str] = []
        self.closed = False

    def subscribe(self, *channels: str) -> None:
        for channel in channels:
            self._channels.append(channel)
            self._server._subscribe(channel, self._queue)
            self._queue.put({"type": "subscribe", "channel": channel.encode(), "data": len(self._channels)})

    def get_message(self, timeout: float = 0.0):
        try:
            message = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if self.ignore_subscribe_messages and message["type"] == "subscribe":
            return None
        return message

    def unsubscribe(self) -> None:
        for channel in self._channels:
            self._server._unsubscribe(channel, self._queue)
        self._channels.clear()

    def close(self) -> None:
        self.unsubscribe()
        self.closed = True


class FakeRedis:
    """In-memory stand-in for the redis-py commands the lock backends use.

    Values are stored as bytes like a default redis-py client returns them.
    Expiry follows ``clock`` so tests can jump past a TTL without sleeping.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[bytes, float | None]] = {}
        self._channels: dict[str, list[queue.Queue]] = {}
        self._lock = threading.Lock()
        self.published: list[tuple[str, bytes]] = []
        self.closed = False
        self.fail_with: Exception | None = None

    @staticmethod
    def _encode(value) -> bytes:
        return value if isinstance(value, bytes) else str(value).encode("utf-8")

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _live(self, key: str) -> bytes | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and self._clock() >= deadline:
            del self._data[key]
            return None
        return value

    def set(self, key: str, value, nx: bool = False, px: int | None = None):
        self._check()
        with self._lock:
            if nx and self._live(key) is not None:
                return None
            deadline = self._clock() + px / 1000.0 if px is not None else None
            self._data[key] = (self._encode(value), deadline)
            return True

    def get(self, key: str):
        self._check()
        with self._lock:
            return self._live(key)

    def exists(self, *keys: str) -> int:
        self._check()
        with self._lock:
            return sum(1 for key in keys if self._live(key) is not None)

    def keys(self) -> list[str]:
        with self._lock:
            return [key for key in list(self._data) if self._live(key) is not None]

    def pttl(self, key: str) -> int:
        with self._lock:
            if self._live(key) is None:
                return -2
            deadline = self._data[key][1]
            return -1 if deadline is None else int((deadline - self._clock()) * 1000)

    def publish(self, channel: str, message) -> int:
        self._check()
        payload = self._encode(message)
        self.published.append((channel, payload))
        subscribers = list(self._channels.get(channel, []))
        for subscriber in subscribers:
            subscriber.put({"type": "message", "channel": channel.encode(), "data": payload})
        return len(subscribers)

    def eval(self, script: str, numkeys: int, *args):
        self._check()
        keys, argv = list(args[:numkeys]), list(args[numkeys:])
        with self._lock:
            current = self._live(keys[0])
            owned = current is not None and current == self._encode(argv[0])
            if script == keyvalue_module.RELEASE_SCRIPT:
                if owned:
                    del self._data[keys[0]]
                    return 1
                return 0
            if script == keyvalue_module.RELEASE_AND_PUBLISH_SCRIPT:
                if not owned:
                    return 0
                del self._data[keys[0]]
        if script == keyvalue_module.RELEASE_AND_PUBLISH_SCRIPT:
            self.publish(keys[1], argv[0])
            return 1
        if script == keyvalue_module.RENEW_SCRIPT:
            with self._lock:
                if not owned:
                    return 0
                self._data[keys[0]] = (current, self._clock() + int(argv[1]) / 1000.0)
                return 1
        raise NotImplementedError(f"unexpected script: {script!r}")

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        self._check()
        return FakePubSub(self, ignore_subscribe_messages=ignore_subscribe_messages)

    def _subscribe(self, channel: str, subscriber: queue.Queue) -> None:
        self._channels.setdefault(channel, []).append(subscriber)

    def _unsubscribe(self, channel: str, subscriber: queue.Queue) -> None:
        subscribers = self._channels.get(channel, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Redis stand-in on the real monotonic clock."""
    return FakeRedis()


@pytest.fixture
def clocked_redis(fake_clock: FakeClock) -> FakeRedis:
    """Redis stand-in whose key expiry follows ``fake_clock``."""
    return FakeRedis(clock=fake_clock)


@pytest.fixture
def redis_connection_error() -> Exception:
    return redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    return tmp_path / "locks.db"


@pytest.fixture
def lock_rows(sqlite_path: Path):
    """Return a helper listing (name, owner_token) rows in the default lock table."""

    def _rows(table: str = "task_mutexes") -> list[tuple[str, str]]:
        conn = sqlite3.connect(sqlite_path)
        try:
            return [tuple(row) for row in conn.execute(f"SELECT name, owner_token FROM {table} ORDER BY name")]
        finally:
            conn.close()

    return _rows
