"""Relational lock backend over any DB-API 2.0 connection.

Each lock is one row ``(name, owner_token, expires_at)`` in a shared table.
The primary key on ``name`` makes "insert if absent" atomic; an expiry
guard on the UPDATE makes "take over if stale" atomic. Release and renew
match on the owner token so a holder that lost its lease cannot touch the
new holder's row.

``expires_at`` is epoch seconds from the acquiring client's clock, so hosts
sharing a table need reasonably synchronized clocks.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import sqlite3
import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from task_mutex.core.constants import DEFAULT_LEASE_TTL, DEFAULT_TABLE
from task_mutex.core.exceptions import BackendUnavailable, ConfigurationError
from task_mutex.core.locks.base import SleepingWaitMixin

try:
    import pymysql
except ImportError:  # optional extra: task-mutex[mysql]
    pymysql = None

try:
    import psycopg2
except ImportError:  # optional extra: task-mutex[postgresql]
    psycopg2 = None

logger = logging.getLogger(__name__)

_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_SQLITE_URL_PREFIX = "sqlite:///"
_MYSQL_SCHEMES = ("mysql", "mariadb")
_POSTGRES_SCHEMES = ("postgresql", "postgres")

Connectable = Any  # DB-API connection, zero-arg factory, path, or database URL


def _connect_url(target: str) -> Any:
    """Open a server database from a ``mysql://`` or ``postgresql://`` URL."""
    parsed = urlparse(target)
    scheme = parsed.scheme.split("+", 1)[0].lower()
    user = unquote(parsed.username) if parsed.username else None
    password = unquote(parsed.password) if parsed.password else None
    database = parsed.path.lstrip("/") or None

    if scheme in _MYSQL_SCHEMES:
        if pymysql is None:
            raise ConfigurationError(
                "mysql:// URLs need the pymysql driver (pip install task-mutex[mysql])",
                field="connection",
                details=scheme,
            )
        try:
            return pymysql.connect(
                host=parsed.hostname or "localhost",
                port=parsed.port or 3306,
                user=user,
                password=password or "",
                database=database,
                charset="utf8mb4",
                autocommit=False,
            )
        except pymysql.MySQLError as e:
            raise BackendUnavailable(
                f"Cannot connect to MySQL at {parsed.hostname}", backend="relational", original_error=e
            ) from e

    if scheme in _POSTGRES_SCHEMES:
        if psycopg2 is None:
            raise ConfigurationError(
                "postgresql:// URLs need the psycopg2 driver (pip install task-mutex[postgresql])",
                field="connection",
                details=scheme,
            )
        try:
            return psycopg2.connect(
                host=parsed.hostname or "localhost",
                port=parsed.port or 5432,
                user=user,
                password=password,
                dbname=database,
            )
        except psycopg2.Error as e:
            raise BackendUnavailable(
                f"Cannot connect to PostgreSQL at {parsed.hostname}", backend="relational", original_error=e
            ) from e

    raise ConfigurationError(
        "Unsupported database URL; use sqlite:///, mysql:// or postgresql://, or pass a DB-API connection",
        field="connection",
        details=scheme,
    )


def connect(connectable: Connectable) -> tuple[Any, bool]:
    """Resolve a connection descriptor. Returns ``(connection, created)``."""
    if isinstance(connectable, (str, os.PathLike)):
        target = os.fspath(connectable)
        if target.startswith(_SQLITE_URL_PREFIX):
            target = target[len(_SQLITE_URL_PREFIX) :]
        elif "://" in target:
            return _connect_url(target), True
        if target != ":memory:":
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        try:
            return sqlite3.connect(target, timeout=5.0), True
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Cannot open database '{target}'", backend="relational", original_error=e) from e
    if callable(connectable) and not hasattr(connectable, "cursor"):
        return connectable(), True
    return connectable, False


def _driver_module(connection: Any) -> Any:
    return sys.modules.get(type(connection).__module__.split(".")[0])


def _placeholders(paramstyle: str, count: int) -> list[str]:
    if paramstyle == "qmark":
        return ["?"] * count
    if paramstyle == "numeric":
        return [f":{i}" for i in range(1, count + 1)]
    if paramstyle == "named":
        return [f":p{i}" for i in range(1, count + 1)]
    if paramstyle in ("format", "pyformat"):
        return ["%s"] * count
    raise ConfigurationError(f"Unsupported DB-API paramstyle '{paramstyle}'", field="connection")


class RelationalBackend(SleepingWaitMixin):
    """Lock rows in ``table`` guarded by a primary key and an expiry check."""

    name = "relational"
    ttl_supported = True

    def __init__(
        self,
        connection: Any,
        table: str = DEFAULT_TABLE,
        *,
        create_table: bool = True,
        owns_connection: bool = True,
        default_ttl: float = DEFAULT_LEASE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        if not _TABLE_NAME_PATTERN.match(table or ""):
            raise ConfigurationError("Invalid table name", field="table", details=repr(table))
        self.table = table
        self.default_ttl = default_ttl
        self._connection = connection
        self._owns_connection = owns_connection
        self._clock = clock
        self._closed = False

        driver = _driver_module(connection)
        self._paramstyle = getattr(driver, "paramstyle", "qmark")
        self._integrity_error = self._driver_error(connection, driver, "IntegrityError")
        self._database_error = self._driver_error(connection, driver, "DatabaseError")
        self._interface_error = self._driver_error(connection, driver, "InterfaceError")

        if create_table:
            self.create_table()

    @staticmethod
    def _driver_error(connection: Any, driver: Any, name: str) -> type[BaseException]:
        error = getattr(connection, name, None) or getattr(driver, name, None)
        if isinstance(error, type) and issubclass(error, BaseException):
            return error
        return getattr(sqlite3, name)

    def _sql(self, template: str, count: int) -> str:
        return template.format(*_placeholders(self._paramstyle, count), table=self.table)

    def _params(self, *values: Any) -> Any:
        if self._paramstyle == "named":
            return {f"p{i}": value for i, value in enumerate(values, start=1)}
        return values

    def _execute(self, operation: str, sql: str, *values: Any, fetch: bool = False) -> Any:
        """Run one statement in its own transaction. Returns rowcount or first row."""
        if self._closed:
            raise BackendUnavailable("Relational backend is closed", backend=self.name)
        cursor = None
        try:
            cursor = self._connection.cursor()
            cursor.execute(sql, self._params(*values))
            result = cursor.fetchone() if fetch else cursor.rowcount
            self._connection.commit()
            return result
        except self._integrity_error:
            self._rollback()
            raise
        except (self._database_error, self._interface_error) as e:
            self._rollback()
            raise BackendUnavailable(
                f"Lock table {operation} failed", backend=self.name, original_error=e
            ) from e
        finally:
            if cursor is not None:
                with contextlib.suppress(Exception):
                    cursor.close()

    def _rollback(self) -> None:
        try:
            self._connection.rollback()
        except (self._database_error, self._interface_error) as e:
            logger.debug("Rollback failed: %s", e)

    def create_table(self) -> None:
        self._execute(
            "create",
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "name VARCHAR(255) NOT NULL PRIMARY KEY, "
            "owner_token VARCHAR(64) NOT NULL, "
            "expires_at DOUBLE PRECISION NOT NULL)",
        )

    def try_acquire(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        if not ttl_seconds or ttl_seconds <= 0:
            raise ConfigurationError("Relational locks require a positive lease TTL", field="lease_ttl")
        now = self._clock()
        expires_at = now + ttl_seconds

        taken_over = self._execute(
            "takeover",
            self._sql("UPDATE {table} SET owner_token = {0}, expires_at = {1} WHERE name = {2} AND expires_at <= {3}", 4),
            token,
            expires_at,
            lock_name,
            now,
        )
        if taken_over == 1:
            logger.info("Took over expired lock '%s'", lock_name)
            return True

        try:
            self._execute(
                "insert",
                self._sql("INSERT INTO {table} (name, owner_token, expires_at) VALUES ({0}, {1}, {2})", 3),
                lock_name,
                token,
                expires_at,
            )
        except self._integrity_error:
            return False
        return True

    def release(self, lock_name: str, token: str) -> bool:
        deleted = self._execute(
            "release",
            self._sql("DELETE FROM {table} WHERE name = {0} AND owner_token = {1}", 2),
            lock_name,
            token,
        )
        return deleted == 1

    def renew(self, lock_name: str, token: str, ttl_seconds: float | None) -> bool:
        if not ttl_seconds or ttl_seconds <= 0:
            raise ConfigurationError("Relational locks require a positive lease TTL", field="lease_ttl")
        now = self._clock()
        updated = self._execute(
            "renew",
            self._sql(
                "UPDATE {table} SET expires_at = {0} WHERE name = {1} AND owner_token = {2} AND expires_at > {3}", 4
            ),
            now + ttl_seconds,
            lock_name,
            token,
            now,
        )
        return updated == 1

    def is_locked(self, lock_name: str) -> bool:
        row = self._execute(
            "query",
            self._sql("SELECT 1 FROM {table} WHERE name = {0} AND expires_at > {1}", 2),
            lock_name,
            self._clock(),
            fetch=True,
        )
        return row is not None

    def owner(self, lock_name: str) -> str | None:
        row = self._execute(
            "query",
            self._sql("SELECT owner_token FROM {table} WHERE name = {0} AND expires_at > {1}", 2),
            lock_name,
            self._clock(),
            fetch=True,
        )
        return None if row is None else str(row[0])

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number removed."""
        removed = self._execute(
            "purge",
            self._sql("DELETE FROM {table} WHERE expires_at <= {0}", 1),
            self._clock(),
        )
        return max(removed, 0)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_connection:
            with contextlib.suppress(Exception):
                self._connection.close()
