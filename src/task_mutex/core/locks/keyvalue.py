"""Redis lock backends (SET NX PX + token-guarded Lua scripts).

``KeyValueBackend`` polls. ``PubSubBackend`` additionally announces releases
on a per-lock channel so blocked waiters can retry at once; a notification
is only a hint and never implies ownership.
"""

from __future__ import annotations

import contextlib
import logging
import time
from typing import Any

import redis

from task_mutex.core.constants import DEFAULT_KEY_PREFIX, DEFAULT_LEASE_TTL, RELEASE_CHANNEL_INFIX
from task_mutex.core.exceptions import BackendUnavailable, ConfigurationError
from task_mutex.core.locks.base import SleepingWaitMixin

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
else
  return 0
end
"""

RELEASE_AND_PUBLISH_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  redis.call("del", KEYS[1])
  redis.call("publish", KEYS[2], ARGV[1])
  return 1
else
  return 0
end
"""

RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("pexpire", KEYS[1], ARGV[2])
else
  return 0
end
"""

_REDIS_URL_SCHEMES = ("redis://", "rediss://", "unix://")


def connect(connectable: Any) -> tuple[Any, bool]:
    """Resolve a client descriptor. Returns ``(client, created)``."""
    if isinstance(connectable, str):
        if not connectable.startswith(_REDIS_URL_SCHEMES):
            raise ConfigurationError(
                "Redis connection must be a redis://, rediss:// or unix:// URL",
                field="connection",
            )
        return redis.Redis.from_url(connectable), True
    if callable(connectable) and not hasattr(connectable, "set"):
        return connectable(), True
    return connectable, False


def _ttl_ms(ttl_seconds: float | None) -> int:
    if not ttl_seconds or ttl_seconds <= 0:
        raise ConfigurationError("Key-value locks require a positive lease TTL", field="lease_ttl")
    return max(1, int(ttl_seconds * 1000))


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class KeyValueBackend(SleepingWaitMixin):
    """One Redis key per lock holding the owner token, expiring after the TTL."""

    name = "keyvalue"
    ttl_supported = True
    release_script = RELEASE_SCRIPT

    def __init__(
        self,
        client: Any,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        owns_client: bool = True,
        default_ttl: float = DEFAULT_LEASE_TTL,
    ):
        self._client = client
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl
        self._owns_client = owns_client
        self._closed = False

    def key(self, lock_name: str) -> str:
        return f"{self.key_prefix}{lock_name}"

    def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        if self._closed:
            raise BackendUnavailable(f"{type(self).__name__} is closed", backend=self.name)
        try:
            return func(*args, **kwargs)
        except redis.exceptions.RedisError as e:
            raise BackendUnavailable(f"Redis {operation} failed", backend=self.name, original_error=e) from e

    def try_acquire(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        ttl_ms = _ttl_ms(ttl_seconds)
        return bool(self._call("set", self._client.set, self.key(lock_name), token, nx=True, px=ttl_ms))

    def _release_keys(self, lock_name: str) -> list[str]:
        return [self.key(lock_name)]

    def release(self, lock_name: str, token: str) -> bool:
        keys = self._release_keys(lock_name)
        result = self._call("release", self._client.eval, self.release_script, len(keys), *keys, token)
        return int(result or 0) == 1

    def renew(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        ttl_ms = _ttl_ms(ttl_seconds)
        result = self._call("renew", self._client.eval, RENEW_SCRIPT, 1, self.key(lock_name), token, ttl_ms)
        return int(result or 0) == 1

    def is_locked(self, lock_name: str) -> bool:
        return int(self._call("exists", self._client.exists, self.key(lock_name)) or 0) > 0

    def owner(self, lock_name: str) -> str | None:
        return _as_text(self._call("get", self._client.get, self.key(lock_name)))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            with contextlib.suppress(Exception):
                self._client.close()


class PubSubBackend(KeyValueBackend):
    """KeyValueBackend whose releases wake waiters through Redis pub/sub."""

    name = "pubsub"
    release_script = RELEASE_AND_PUBLISH_SCRIPT

    def __init__(self, client: Any, **kwargs: Any):
        super().__init__(client, **kwargs)
        self._subscriptions: dict[str, Any] = {}

    def channel(self, lock_name: str) -> str:
        return f"{self.key_prefix}{RELEASE_CHANNEL_INFIX}{lock_name}"

    def _release_keys(self, lock_name: str) -> list[str]:
        return [self.key(lock_name), self.channel(lock_name)]

    def wait(self, lock_name: str, seconds: float) -> None:
        if seconds <= 0:
            return
        pubsub = self._subscriptions.get(lock_name)
        if pubsub is None:
            pubsub = self._call("pubsub", self._client.pubsub, ignore_subscribe_messages=True)
            self._call("subscribe", pubsub.subscribe, self.channel(lock_name))
            self._subscriptions[lock_name] = pubsub
        # With ignore_subscribe_messages, confirmations come back as None; keep
        # reading until a real message arrives or the budget is spent.
        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            message = self._call("get_message", pubsub.get_message, timeout=remaining)
            if message is not None:
                logger.debug("Release notification for '%s'", lock_name)
                return

    def stop_waiting(self, lock_name: str) -> None:
        pubsub = self._subscriptions.pop(lock_name, None)
        if pubsub is None:
            return
        with contextlib.suppress(redis.exceptions.RedisError):
            pubsub.unsubscribe()
        with contextlib.suppress(Exception):
            pubsub.close()

    def close(self) -> None:
        for lock_name in list(self._subscriptions):
            self.stop_waiting(lock_name)
        super().close()
