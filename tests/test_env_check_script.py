"""Tests for the environment validation and drift detection script."""

from __future__ import annotations

from pathlib import Path

import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from scripts import check_env

REQUIRED_ENV_KEYS = [
    "GRAPH_TENANT_ID",
    "GRAPH_CLIENT_ID",
    "GRAPH_CLIENT_SECRET",
    "GRAPH_MAILBOX_USER_ID",
    "WEBHOOK_NOTIFICATION_URL",
    "WEBHOOK_CLIENT_STATE",
]

VALID_ENV = {
    "GRAPH_TENANT_ID": "tenant",
    "GRAPH_CLIENT_ID": "client",
    "GRAPH_CLIENT_SECRET": "secret",
    "GRAPH_MAILBOX_USER_ID": "payments@example.com",
    "WEBHOOK_NOTIFICATION_URL": "https://hooks.example.com/api/webhooks/notifications",
    "WEBHOOK_CLIENT_STATE": "state",
}


def _write_env(env_path: Path, **values: str) -> None:
    contents = "\n".join(f"{key}={value}" for key, value in values.items())
    env_path.write_text(contents + "\n", encoding="utf-8")


def _clear_required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in REQUIRED_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.mark.parametrize("command", ["record", "verify", "check"])
def test_main_requires_existing_env_file(tmp_path: Path, command: str) -> None:
    env_file = tmp_path / ".missing-env"
    argv = [command, "--env-file", str(env_file)]
    if command != "check":
        argv.extend(["--hash-file", str(tmp_path / ".env.sha256")])

    assert check_env.main(argv) == check_env.EXIT_RUNTIME_ERROR


def test_record_and_verify_detects_mismatched_checksum(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    hash_file = tmp_path / ".env.sha256"
    argv_tail = ["--env-file", str(env_file), "--hash-file", str(hash_file)]

    _clear_required_env(monkeypatch)
    _write_env(env_file, **VALID_ENV)
    assert check_env.main(["record", *argv_tail]) == check_env.EXIT_OK
    assert hash_file.read_text(encoding="utf-8").strip()

    _clear_required_env(monkeypatch)
    assert check_env.main(["verify", *argv_tail]) == check_env.EXIT_OK

    _write_env(env_file, **{**VALID_ENV, "WEBHOOK_CLIENT_STATE": "rotated"})
    _clear_required_env(monkeypatch)
    assert check_env.main(["verify", *argv_tail]) == check_env.EXIT_CHECKSUM_ERROR


def test_verify_without_baseline_is_runtime_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    _clear_required_env(monkeypatch)
    _write_env(env_file, **VALID_ENV)

    exit_code = check_env.main(
        ["verify", "--env-file", str(env_file), "--hash-file", str(tmp_path / "none")]
    )

    assert exit_code == check_env.EXIT_RUNTIME_ERROR


def test_validation_failure_for_missing_client_state(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    _clear_required_env(monkeypatch)
    values = dict(VALID_ENV)
    values.pop("WEBHOOK_CLIENT_STATE")
    _write_env(env_file, **values)

    exit_code = check_env.main(["check", "--env-file", str(env_file)])

    assert exit_code == check_env.EXIT_VALIDATION_ERROR


def test_check_prints_summary(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    env_file = tmp_path / ".env"
    _clear_required_env(monkeypatch)
    _write_env(env_file, **VALID_ENV)

    assert check_env.main(["check", "--env-file", str(env_file)]) == check_env.EXIT_OK

    output = capsys.readouterr().out
    assert "/users/payments@example.com/messages" in output
    assert "NetSuite applier:  disabled" in output
