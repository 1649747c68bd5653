"""Backend selection: one explicit branch per supported strategy."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

from task_mutex.core.config import MutexConfig
from task_mutex.core.constants import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_LEASE_TTL,
    DEFAULT_STRATEGY,
    DEFAULT_TABLE,
    STRATEGY_ALIASES,
)
from task_mutex.core.exceptions import BackendUnavailable, ConfigurationError, UnsupportedStrategy
from task_mutex.core.locks import keyvalue, relational
from task_mutex.core.locks.base import LockBackend
from task_mutex.core.locks.file import FileBackend
from task_mutex.core.locks.keyvalue import KeyValueBackend, PubSubBackend
from task_mutex.core.locks.relational import RelationalBackend


class LockStrategy(str, Enum):
    FILE = "file"
    RELATIONAL = "relational"
    KEYVALUE = "keyvalue"
    PUBSUB = "pubsub"

    @classmethod
    def parse(cls, value: LockStrategy | str | None) -> LockStrategy:
        """Resolve a strategy name or alias; None means the documented ``file`` fallback."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls(DEFAULT_STRATEGY)
        if not isinstance(value, str):
            raise UnsupportedStrategy(value, supported_strategy_names())
        requested = value.strip().lower()
        requested = STRATEGY_ALIASES.get(requested, requested)
        try:
            return cls(requested)
        except ValueError:
            raise UnsupportedStrategy(value, supported_strategy_names()) from None


def supported_strategy_names() -> list[str]:
    return [strategy.value for strategy in LockStrategy] + sorted(STRATEGY_ALIASES)


@dataclass
class BackendSettings:
    """Strategy-specific settings handed to the factory.

    Attributes:
        directory: File backend base path
        remove_on_release: File backend deletes the lock file on release
        connection: Relational or Redis connection (object, zero-arg factory, URL or path)
        table: Relational backend table
        create_table: Relational backend creates the table if missing
        key_prefix: Redis key namespace
        lease_ttl: Default TTL for backends that expire leases
        close_connection: Close a caller-supplied connection when the backend closes
    """

    directory: str | os.PathLike | None = None
    remove_on_release: bool = True
    connection: Any = None
    table: str = DEFAULT_TABLE
    create_table: bool = True
    key_prefix: str = DEFAULT_KEY_PREFIX
    lease_ttl: float = DEFAULT_LEASE_TTL
    close_connection: bool = True

    @classmethod
    def from_config(cls, config: MutexConfig, *, connection: Any = None) -> BackendSettings:
        """Settings for ``config``; an explicit ``connection`` object wins over the configured descriptor."""
        return cls(
            directory=config.directory,
            connection=connection if connection is not None else config.connection,
            table=config.table,
            key_prefix=config.key_prefix,
            lease_ttl=config.lease_ttl,
        )


def _require(settings: BackendSettings, field: str, strategy: LockStrategy) -> Any:
    value = getattr(settings, field)
    if value is None or value == "":
        raise ConfigurationError(f"The {strategy.value} strategy requires '{field}'", field=field)
    return value


def create_lock_backend(
    strategy: LockStrategy | str | None,
    settings: BackendSettings | None = None,
    *,
    logger: logging.Logger | None = None,
) -> LockBackend:
    """Create the backend for ``strategy`` wired with ``settings``.

    Raises:
        UnsupportedStrategy: ``strategy`` names no backend.
        ConfigurationError: a setting the strategy needs is missing or invalid.
        BackendUnavailable: the backend cannot run here (e.g. no fcntl).
    """
    log = logger or logging.getLogger(__name__)
    settings = settings or BackendSettings()
    resolved = LockStrategy.parse(strategy)

    if resolved is LockStrategy.FILE:
        if not FileBackend.is_supported():
            raise BackendUnavailable("fcntl locks are unavailable on this platform", backend=resolved.value)
        directory = _require(settings, "directory", resolved)
        log.debug("Using file lock backend in %s", directory)
        return FileBackend(directory, remove_on_release=settings.remove_on_release)

    if resolved is LockStrategy.RELATIONAL:
        conn, created = relational.connect(_require(settings, "connection", resolved))
        log.debug("Using relational lock backend on table %s", settings.table)
        try:
            return RelationalBackend(
                conn,
                settings.table,
                create_table=settings.create_table,
                owns_connection=created or settings.close_connection,
                default_ttl=settings.lease_ttl,
            )
        except Exception:
            if created:
                conn.close()
            raise

    if resolved is LockStrategy.KEYVALUE or resolved is LockStrategy.PUBSUB:
        client, created = keyvalue.connect(_require(settings, "connection", resolved))
        backend_cls = PubSubBackend if resolved is LockStrategy.PUBSUB else KeyValueBackend
        log.debug("Using %s lock backend with key prefix %r", resolved.value, settings.key_prefix)
        return backend_cls(
            client,
            key_prefix=settings.key_prefix,
            owns_client=created or settings.close_connection,
            default_ttl=settings.lease_ttl,
        )

    raise UnsupportedStrategy(strategy, supported_strategy_names())  # pragma: no cover - enum is exhaustive
