"""Command-line entry point: run a command only while holding a mutex."""

from __future__ import annotations

import argparse
import hashlib
import json
import logging
import os
import subprocess
import sys

from task_mutex.core.config import MutexConfig
from task_mutex.core.constants import EXIT_CONFIG, EXIT_LOCKED, EXIT_UNAVAILABLE
from task_mutex.core.exceptions import BackendUnavailable, ConfigurationError
from task_mutex.core.locks.factory import supported_strategy_names
from task_mutex.core.locks.mutex import Mutex
from task_mutex.core.logging import setup_logging
from task_mutex.core.version import __version__

logger = logging.getLogger(__name__)


def default_mutex_name(command: list[str]) -> str:
    """Derive a stable lock name from a command line.

    Identical command lines contend for the same lock; different arguments
    get different locks.
    """
    program = os.path.basename(command[0]) if command else "command"
    digest = hashlib.md5(json.dumps(command).encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"cmd-{program}-{digest}"


def _add_mutex_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", help="Lock name (default for 'run': derived from the command line)")
    parser.add_argument(
        "--strategy",
        help=f"Lock backend: {', '.join(supported_strategy_names())} (default: file)",
    )
    parser.add_argument("--lease-ttl", type=float, help="Seconds before an unreleased lease is stale")
    parser.add_argument("--poll-interval", type=float, help="First wait between acquire attempts")
    parser.add_argument("--directory", help="File strategy: directory holding lock files")
    parser.add_argument("--table", help="Relational strategy: lock table name")
    parser.add_argument(
        "--connection",
        help="Relational: sqlite path, sqlite:///, mysql:// or postgresql:// URL. Keyvalue/pubsub: redis:// URL",
    )
    parser.add_argument("--key-prefix", help="Keyvalue/pubsub strategy: key namespace prefix")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL env var or WARNING)",
    )
    parser.add_argument("--log-format", choices=["text", "json"], default="text", help="Log output format")


def build_parser() -> argparse.ArgumentParser:
    """Build the ``task-mutex`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="task-mutex",
        description="task-mutex - run commands without overlapping across processes and hosts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Skip this run if the previous nightly report is still going
  task-mutex run --name nightly-report -- ./report.sh

  # Wait up to 30s for the lock, coordinating through Redis
  task-mutex run --strategy keyvalue --connection redis://localhost:6379/0 --timeout 30 -- ./sync.sh

  # Coordinate through a shared sqlite database
  task-mutex run --strategy relational --connection /srv/shared/locks.db -- ./import.py

  # Check whether a lock is currently held
  task-mutex status --name nightly-report

Unset options fall back to TASK_MUTEX_* environment variables.
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command_name", required=True)

    run_parser = subparsers.add_parser("run", help="Run a command while holding the mutex")
    _add_mutex_options(run_parser)
    run_parser.add_argument(
        "--timeout", type=float, help="Seconds to wait for the lock (default: 0 = give up at once)"
    )
    run_parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run (after --)")

    status_parser = subparsers.add_parser("status", help="Report whether the mutex is held")
    _add_mutex_options(status_parser)
    return parser


def _resolve_config(args: argparse.Namespace, command: list[str] | None = None) -> MutexConfig:
    config = MutexConfig.from_args(args, base=MutexConfig.from_env())
    if command and not config.lock_name:
        config = config.merged(lock_name=default_mutex_name(command))
    return config.validate()


def _cmd_run(args: argparse.Namespace) -> int:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        print("Error: no command given (use: task-mutex run [options] -- COMMAND...)", file=sys.stderr)
        return EXIT_CONFIG
    config = _resolve_config(args, command)
    with Mutex.from_config(config) as mutex:
        result = mutex.acquire_result(config.timeout)
        if not result.acquired:
            print(f"Another instance holding mutex '{config.lock_name}' is running; skipping.", file=sys.stderr)
            return EXIT_LOCKED
        try:
            logger.info("Running %s under mutex '%s'", command[0], config.lock_name)
            try:
                completed = subprocess.run(command, check=False)
            except FileNotFoundError:
                print(f"Error: command not found: {command[0]}", file=sys.stderr)
                return 127
            return completed.returncode
        finally:
            mutex.release()


def _cmd_status(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    with Mutex.from_config(config) as mutex:
        locked = mutex.is_locked()
    print("locked" if locked else "unlocked")
    return 0 if locked else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(log_level=args.log_level or os.environ.get("LOG_LEVEL", "WARNING"), log_format=args.log_format)

    try:
        if args.command_name == "run":
            return _cmd_run(args)
        return _cmd_status(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except BackendUnavailable as e:
        print(f"Lock backend unavailable: {e}", file=sys.stderr)
        return EXIT_UNAVAILABLE


def run() -> None:
    """Console-script wrapper around ``main``."""
    sys.exit(main())
