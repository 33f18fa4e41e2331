"""Utility for verifying monitor configuration and inspecting the cached state.

Commands:

1. ``check`` loads ``AppSettings`` from the given ``.env`` file and reports
   missing or out-of-range values (blank token, polling interval outside
   60-3600 seconds) before the service is started.
2. ``show`` renders the snapshot currently cached for the configured token,
   exactly as the status endpoint would, without touching the network.

Example usages::

    python -m scripts.check_env check --env-file /opt/balance-watch/.env
    python -m scripts.check_env show --env-file /opt/balance-watch/.env
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from balance_watch.clients import SQLiteStore
from balance_watch.core.config import AppSettings, _load_env_file, looks_like_token
from balance_watch.services import AccountCache, render_status

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_RUNTIME_ERROR = 5


def _load_settings(env_file: Path) -> AppSettings:
    """Load settings, giving the supplied env file priority over ``.env``."""
    _load_env_file(str(env_file))
    return AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]


def _check(settings: AppSettings) -> int:
    errors = settings.monitor.validation_errors()
    if errors:
        print(
            "Monitor settings are incomplete:\n"
            + "\n".join(f"  - {error}" for error in errors),
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    if not looks_like_token(settings.monitor.token):
        print("Warning: the configured token looks too short to be valid.", file=sys.stderr)
    print("Settings OK.")
    return EXIT_OK


def _show(settings: AppSettings) -> int:
    monitor_settings = settings.monitor
    configured = monitor_settings.is_valid
    snapshot = None
    if configured:
        db_path = Path(monitor_settings.cache_db_path)
        if db_path.exists():
            cache = AccountCache(SQLiteStore(str(db_path)))
            snapshot = cache.read(monitor_settings.token)
    indicator = render_status(snapshot, configured=configured)
    print(f"[{indicator.state.value}] {indicator.text}")
    print(indicator.tooltip)
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate monitor settings and inspect the cached balance."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common_arguments(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Env file holding the BALANCE_WATCH_* settings (default: ./.env).",
        )

    check_parser = subparsers.add_parser(
        "check",
        help="Validate settings without contacting the account service.",
    )
    add_common_arguments(check_parser)

    show_parser = subparsers.add_parser(
        "show",
        help="Print the cached status for the configured token.",
    )
    add_common_arguments(show_parser)

    return parser


def _ensure_env_file(env_file: Path) -> None:
    if not env_file.exists():
        raise FileNotFoundError(
            f"Env file {env_file} not found; "
            "pass --env-file with the file the service is started with."
        )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_file: Path = args.env_file

    try:
        _ensure_env_file(env_file)
        settings = _load_settings(env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Could not parse the monitor settings:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Failed to load settings: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    command: str = args.command
    handlers: dict[str, Callable[[], int]] = {
        "check": lambda: _check(settings),
        "show": lambda: _show(settings),
    }
    return handlers[command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
