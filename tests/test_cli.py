"""Tests for the task-mutex command-line interface"""

import importlib
import os
import sys
import tempfile

import pytest

from task_mutex.cli.main import build_parser, default_mutex_name, main
from task_mutex.core.constants import ENV_VAR_MAPPING, EXIT_CONFIG, EXIT_LOCKED, EXIT_UNAVAILABLE
from task_mutex.core.locks.file import FileBackend

# The package re-exports the main() function under the submodule's name.
cli_module = importlib.import_module("task_mutex.cli.main")


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    """Keep the CLI from reconfiguring root logging and from reading the real environment"""
    monkeypatch.setattr(cli_module, "setup_logging", lambda **kwargs: None)
    for env_var in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def lock_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


class TestArgumentParsing:
    """Test command-line argument parsing"""

    def test_run_collects_command_after_separator(self):
        args = build_parser().parse_args(
            ["run", "--name", "nightly", "--timeout", "5", "--", "report.sh", "--fast"]
        )
        assert args.command_name == "run"
        assert args.name == "nightly"
        assert args.timeout == 5.0
        assert [part for part in args.command if part != "--"] == ["report.sh", "--fast"]

    def test_unset_options_stay_none(self):
        args = build_parser().parse_args(["status", "--name", "nightly"])
        assert args.strategy is None
        assert args.lease_ttl is None
        assert args.connection is None
        assert args.log_format == "text"

    def test_subcommand_is_required(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            build_parser().parse_args([])
        assert excinfo.value.code == 2


class TestDefaultMutexName:
    """Test lock names derived from command lines"""

    def test_stable_for_same_command(self):
        assert default_mutex_name(["/usr/bin/report", "--daily"]) == default_mutex_name(["/usr/bin/report", "--daily"])

    def test_distinct_for_different_arguments(self):
        daily = default_mutex_name(["report", "--daily"])
        weekly = default_mutex_name(["report", "--weekly"])
        assert daily != weekly
        assert daily.startswith("cmd-report-")


class TestRunCommand:
    """Test running commands under the mutex"""

    def test_exit_code_is_passed_through(self, lock_dir):
        code = main(
            ["run", "--name", "job", "--directory", lock_dir, "--", sys.executable, "-c", "import sys; sys.exit(3)"]
        )
        assert code == 3
        assert os.listdir(lock_dir) == []

    def test_command_runs_while_lock_is_held(self, lock_dir):
        check_held = "import os, sys; sys.exit(0 if os.listdir(sys.argv[1]) else 5)"
        code = main(["run", "--name", "job", "--directory", lock_dir, "--", sys.executable, "-c", check_held, lock_dir])
        assert code == 0

    def test_held_lock_skips_command(self, lock_dir, tmp_path, capsys):
        marker = tmp_path / "ran"
        holder = FileBackend(lock_dir)
        assert holder.try_acquire("job", "other-instance", None) is True
        try:
            code = main(
                [
                    "run",
                    "--name",
                    "job",
                    "--directory",
                    lock_dir,
                    "--",
                    sys.executable,
                    "-c",
                    f"open({str(marker)!r}, 'w').close()",
                ]
            )
        finally:
            holder.release("job", "other-instance")

        assert code == EXIT_LOCKED
        assert not marker.exists()
        assert "skipping" in capsys.readouterr().err

    def test_missing_command_is_a_usage_error(self, lock_dir, capsys):
        assert main(["run", "--name", "job", "--directory", lock_dir]) == EXIT_CONFIG
        assert "no command given" in capsys.readouterr().err

    def test_unknown_program_returns_127(self, lock_dir):
        code = main(["run", "--name", "job", "--directory", lock_dir, "--", "definitely-not-a-real-program-xyz"])
        assert code == 127
        assert os.listdir(lock_dir) == []

    def test_unsupported_strategy_is_a_configuration_error(self, lock_dir, capsys):
        code = main(["run", "--strategy", "memcached", "--directory", lock_dir, "--", sys.executable, "-V"])
        assert code == EXIT_CONFIG
        assert "memcached" in capsys.readouterr().err

    def test_non_sqlite_url_is_a_configuration_error(self, capsys):
        code = main(
            [
                "run",
                "--strategy",
                "relational",
                "--connection",
                "oracle://app:secret@db/locks",
                "--",
                sys.executable,
                "-V",
            ]
        )
        assert code == EXIT_CONFIG
        assert "secret" not in capsys.readouterr().err

    def test_unreachable_redis_is_backend_unavailable(self, capsys):
        code = main(
            [
                "run",
                "--name",
                "job",
                "--strategy",
                "keyvalue",
                "--connection",
                "redis://127.0.0.1:1/0",
                "--",
                sys.executable,
                "-V",
            ]
        )
        assert code == EXIT_UNAVAILABLE
        assert "unavailable" in capsys.readouterr().err

    def test_environment_supplies_defaults(self, lock_dir, monkeypatch):
        monkeypatch.setenv("TASK_MUTEX_DIRECTORY", lock_dir)
        monkeypatch.setenv("TASK_MUTEX_NAME", "from-env")
        check_name = "import os, sys; sys.exit(0 if os.listdir(sys.argv[1]) == ['from-env.lock'] else 6)"
        assert main(["run", "--", sys.executable, "-c", check_name, lock_dir]) == 0


class TestStatusCommand:
    """Test lock status reporting"""

    def test_unlocked(self, lock_dir, capsys):
        assert main(["status", "--name", "job", "--directory", lock_dir]) == 1
        assert capsys.readouterr().out.strip() == "unlocked"

    def test_locked(self, lock_dir, capsys):
        holder = FileBackend(lock_dir)
        assert holder.try_acquire("job", "token", None) is True
        try:
            assert main(["status", "--name", "job", "--directory", lock_dir]) == 0
        finally:
            holder.release("job", "token")
        assert capsys.readouterr().out.strip() == "locked"

    def test_status_requires_name(self, lock_dir):
        assert main(["status", "--directory", lock_dir]) == EXIT_CONFIG


def test_cli_module_is_patchable_submodule():
    assert cli_module.main is main
    assert cli_module.__name__ == "task_mutex.cli.main"
