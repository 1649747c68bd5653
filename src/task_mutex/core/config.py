"""Configuration dataclasses for task-mutex.

These dataclasses centralize all mutex options for type safety and easy
testing. They can be created from command-line arguments, from the
environment, or used directly in code.
"""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from task_mutex.core.constants import (
    DEFAULT_ACQUIRE_TIMEOUT,
    DEFAULT_KEY_PREFIX,
    DEFAULT_LEASE_TTL,
    DEFAULT_LOCK_DIRECTORY,
    DEFAULT_MAX_POLL_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STRATEGY,
    DEFAULT_TABLE,
    ENV_VAR_MAPPING,
    NUMERIC_CONFIG_FIELDS,
)
from task_mutex.core.exceptions import ConfigurationError


def _parse_float(field_name: str, value: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid numeric value for {field_name}",
            field=field_name,
            details=repr(value),
        ) from e


@dataclass
class MutexConfig:
    """Master configuration for one named mutex.

    Attributes:
        lock_name: Identifier of the protected resource
        strategy: Backend strategy (file, relational, keyvalue, pubsub)
        lease_ttl: Seconds after which an unreleased lease is stale (ignored by file)
        poll_interval: First wait between acquire attempts
        max_poll_interval: Cap for the backoff between attempts
        timeout: Default blocking timeout for acquire (0 = single attempt)
        directory: File backend base path
        table: Relational backend table name
        connection: Relational/keyvalue connection descriptor (URL or path)
        key_prefix: Keyvalue/pubsub namespace prefix
    """

    lock_name: str = ""
    strategy: str = DEFAULT_STRATEGY
    lease_ttl: float = DEFAULT_LEASE_TTL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_poll_interval: float = DEFAULT_MAX_POLL_INTERVAL
    timeout: float = DEFAULT_ACQUIRE_TIMEOUT
    directory: str = DEFAULT_LOCK_DIRECTORY
    table: str = DEFAULT_TABLE
    connection: str | None = None
    key_prefix: str = DEFAULT_KEY_PREFIX

    def validate(self) -> MutexConfig:
        """Raise ConfigurationError for values no backend can work with."""
        if not self.lock_name or not str(self.lock_name).strip():
            raise ConfigurationError("Lock name must not be empty", field="lock_name")
        if self.lease_ttl <= 0:
            raise ConfigurationError("lease_ttl must be positive", field="lease_ttl", details=str(self.lease_ttl))
        if self.poll_interval <= 0:
            raise ConfigurationError(
                "poll_interval must be positive", field="poll_interval", details=str(self.poll_interval)
            )
        if self.timeout < 0:
            raise ConfigurationError("timeout must not be negative", field="timeout", details=str(self.timeout))
        return self

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def merged(self, **overrides: Any) -> MutexConfig:
        """Return a copy with every non-None override applied."""
        values = self.to_dict()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MutexConfig(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MutexConfig:
        """Create configuration from TASK_MUTEX_* environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name, env_var in ENV_VAR_MAPPING.items():
            raw = env.get(env_var)
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            values[field_name] = _parse_float(env_var, raw) if field_name in NUMERIC_CONFIG_FIELDS else raw
        return cls(**values)

    @classmethod
    def from_args(cls, args: argparse.Namespace, base: MutexConfig | None = None) -> MutexConfig:
        """Create configuration from parsed command-line arguments.

        Options left unset on the command line keep the value from ``base``.
        """
        base = base or cls()
        return base.merged(
            lock_name=getattr(args, "name", None),
            strategy=getattr(args, "strategy", None),
            lease_ttl=getattr(args, "lease_ttl", None),
            poll_interval=getattr(args, "poll_interval", None),
            timeout=getattr(args, "timeout", None),
            directory=getattr(args, "directory", None),
            table=getattr(args, "table", None),
            connection=getattr(args, "connection", None),
            key_prefix=getattr(args, "key_prefix", None),
        )
