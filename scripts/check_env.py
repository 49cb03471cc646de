"""Verify the webhook service's environment file before (re)starting it.

Two checks are available:

1. Load ``AppSettings`` from the given ``.env`` so a missing Graph credential,
   webhook URL or client-state secret is reported before the subscription
   bootstrap fails at runtime.
2. Record and later verify a SHA256 checksum of the file, so that edits made
   outside the deployment process are noticed.

Example usages::

    python -m scripts.check_env record --env-file /srv/payhook/.env \
        --hash-file /srv/payhook/.env.sha256

    python -m scripts.check_env verify --env-file /srv/payhook/.env \
        --hash-file /srv/payhook/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from payhook.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    """Load the env file into the process environment and build settings from it."""
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _describe(settings: AppSettings) -> list[str]:
    """Non-secret summary of what the service will do with these settings."""
    webhook = settings.webhook
    netsuite = settings.netsuite
    if netsuite.is_configured:
        applier = f"enabled (account {netsuite.account_id})"
    elif netsuite.enabled:
        applier = "enabled but incomplete credentials, payments stay RECEIVED"
    else:
        applier = "disabled"
    return [
        f"Watched resource:  {settings.graph.watched_resource}",
        f"Notification URL:  {webhook.notification_url}",
        f"Auto-create:       {'yes' if webhook.auto_create else 'no'}",
        f"Payments database: {settings.payments_db_path}",
        f"NetSuite applier:  {applier}",
    ]


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Checksum baseline {hash_file} is missing; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "Review the change before restarting the webhook service.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate webhook service settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_env_file(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: ./.env).",
        )

    def add_hash_file(subparser: argparse.ArgumentParser, help_text: str) -> None:
        subparser.add_argument("--hash-file", required=True, type=Path, help=help_text)

    record_parser = subparsers.add_parser(
        "record", help="Validate settings and store the checksum baseline."
    )
    add_env_file(record_parser)
    add_hash_file(record_parser, "Where to write the checksum baseline.")

    verify_parser = subparsers.add_parser(
        "verify", help="Validate settings and compare against the baseline."
    )
    add_env_file(verify_parser)
    add_hash_file(verify_parser, "Previously recorded checksum baseline.")

    check_parser = subparsers.add_parser(
        "check", help="Validate settings and print a summary."
    )
    add_env_file(check_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
        "check": lambda: EXIT_OK,
    }
    if args.command == "check":
        print("\n".join(_describe(settings)))
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
