"""
tests/test_cli.py -- Tests for the operator command line in main.py.

Covers:
  - register reads the password from stdin and reports the new id
  - validation failures exit non-zero with the error kind
  - withdraw flips the account and a second withdraw fails
  - purge reports removed rows
  - interactive register refuses mismatched confirmation
"""

from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import AccountStatus
from main import build_parser, main

USERNAME = "asdfg12345"
PASSWORD = "TestPassword123!"


@pytest.fixture
def stdin_password(monkeypatch):
    def _set(value: str) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO(value + "\n"))

    return _set


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_register(service, account_store, stdin_password, capsys):
    stdin_password(PASSWORD)
    code = main(["register", USERNAME, "--name", "Kim", "--password-stdin"], service=service)
    assert code == 0
    assert f"Registered {USERNAME}" in capsys.readouterr().out
    assert account_store.find_by_username(USERNAME).display_name == "Kim"


def test_register_short_password(service, stdin_password, capsys):
    stdin_password("short")
    code = main(["register", USERNAME, "--password-stdin"], service=service)
    assert code == 1
    out = capsys.readouterr().out
    assert "password_too_short" in out
    assert "short\n" not in out


def test_register_confirmation_mismatch(service, account_store, monkeypatch):
    answers = iter([PASSWORD, "SomethingElse1!"])
    monkeypatch.setattr("getpass.getpass", lambda prompt="": next(answers))
    assert main(["register", USERNAME], service=service) == 1
    assert account_store.exists_by_username(USERNAME) is False


def test_withdraw(registered, account_store, stdin_password, capsys):
    stdin_password(PASSWORD)
    assert main(["withdraw", USERNAME, "--password-stdin"], service=registered) == 0
    assert account_store.find_by_username(USERNAME).status is AccountStatus.WITHDRAWN

    stdin_password(PASSWORD)
    assert main(["withdraw", USERNAME, "--password-stdin"], service=registered) == 1
    assert "withdrawn" in capsys.readouterr().out


def test_purge(service, revoked_store, capsys):
    revoked_store.revoke("old", USERNAME, datetime.now(timezone.utc) - timedelta(seconds=1))
    assert main(["purge"], service=service) == 0
    assert "Removed 1 expired revocation entries" in capsys.readouterr().out
