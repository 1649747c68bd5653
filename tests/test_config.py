"""Tests for MutexConfig parsing and validation."""

from __future__ import annotations

import argparse

import pytest

from task_mutex.core.config import MutexConfig
from task_mutex.core.constants import DEFAULT_KEY_PREFIX, DEFAULT_LEASE_TTL, DEFAULT_STRATEGY
from task_mutex.core.exceptions import ConfigurationError


def test_defaults() -> None:
    config = MutexConfig(lock_name="job")
    assert config.strategy == DEFAULT_STRATEGY == "file"
    assert config.lease_ttl == DEFAULT_LEASE_TTL
    assert config.key_prefix == DEFAULT_KEY_PREFIX
    assert config.timeout == 0
    assert config.validate() is config


def test_from_env_reads_task_mutex_variables() -> None:
    config = MutexConfig.from_env(
        {
            "TASK_MUTEX_NAME": "nightly-report",
            "TASK_MUTEX_STRATEGY": "keyvalue",
            "TASK_MUTEX_LEASE_TTL": "45",
            "TASK_MUTEX_TIMEOUT": "2.5",
            "TASK_MUTEX_CONNECTION": "redis://cache:6379/2",
            "TASK_MUTEX_KEY_PREFIX": " jobs: ",
            "TASK_MUTEX_TABLE": "",
            "UNRELATED": "x",
        }
    )
    assert config.lock_name == "nightly-report"
    assert config.strategy == "keyvalue"
    assert config.lease_ttl == 45.0
    assert config.timeout == 2.5
    assert config.connection == "redis://cache:6379/2"
    assert config.key_prefix == "jobs:"
    assert config.table == "task_mutexes"


def test_from_env_rejects_non_numeric_values() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        MutexConfig.from_env({"TASK_MUTEX_LEASE_TTL": "thirty"})
    assert excinfo.value.field == "TASK_MUTEX_LEASE_TTL"
    assert "thirty" in str(excinfo.value)


def test_from_args_overrides_base_only_where_given() -> None:
    base = MutexConfig(lock_name="from-env", strategy="relational", table="env_table", lease_ttl=10)
    args = argparse.Namespace(name="from-cli", strategy=None, lease_ttl=None, timeout=3.0, table=None)

    config = MutexConfig.from_args(args, base=base)

    assert config.lock_name == "from-cli"
    assert config.strategy == "relational"
    assert config.table == "env_table"
    assert config.lease_ttl == 10
    assert config.timeout == 3.0
    assert base.lock_name == "from-env"


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"lock_name": ""}, "lock_name"),
        ({"lock_name": "   "}, "lock_name"),
        ({"lease_ttl": 0}, "lease_ttl"),
        ({"poll_interval": -1}, "poll_interval"),
        ({"timeout": -0.5}, "timeout"),
    ],
)
def test_validate_rejects_unusable_values(overrides: dict, field: str) -> None:
    config = MutexConfig(lock_name="job").merged(**overrides)
    with pytest.raises(ConfigurationError) as excinfo:
        config.validate()
    assert excinfo.value.field == field


def test_to_dict_round_trips_fields() -> None:
    config = MutexConfig(lock_name="job", connection="sqlite:///locks.db")
    assert MutexConfig(**config.to_dict()) == config
