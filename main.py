#!/usr/bin/env python3
"""
Fifteen Accounts -- operator command line for the account lifecycle core.

Usage:
  python main.py register asdfg12345 --name "Kim" --email kim@fifteen.io
  python main.py withdraw asdfg12345
  python main.py purge

Passwords are read from the terminal without echo (getpass). Pass
--password-stdin to read a single line from standard input instead, which is
useful for scripted provisioning.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the account database.
  SECRET_KEY     Signing key (required unless DEBUG=true).
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import StorageUnavailableError
from auth.service import AccountService, build_account_service
from auth.store import open_engine
from core.config import get_settings


def _read_password(from_stdin: bool, confirm: bool = False) -> Optional[str]:
    """Prompt for a password, or read one line from stdin when requested."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass("Password: ")
    if confirm and getpass.getpass("Confirm password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def _register(service: AccountService, args: argparse.Namespace) -> int:
    password = _read_password(args.password_stdin, confirm=True)
    if password is None:
        return 1
    outcome = service.register(args.username, password, name=args.name, email=args.email, bio=args.bio)
    if not outcome.ok:
        print(f"  [!] Registration failed: {outcome.error.message} ({outcome.error.kind.value})")
        return 1
    print(f"  Registered {outcome.value.username} (id={outcome.value.id}).")
    return 0


def _withdraw(service: AccountService, args: argparse.Namespace) -> int:
    password = _read_password(args.password_stdin)
    if password is None:
        return 1
    outcome = service.withdraw(args.username, password)
    if not outcome.ok:
        print(f"  [!] Withdrawal failed: {outcome.error.message} ({outcome.error.kind.value})")
        return 1
    print(f"  Account {args.username} withdrawn.")
    return 0


def _purge(service: AccountService, args: argparse.Namespace) -> int:
    try:
        revoked = service.revoked_tokens.purge_expired()
        refreshed = service.refresh_tokens.purge_expired()
    except StorageUnavailableError:
        print("  [!] Account storage is unavailable.")
        return 1
    print(f"  Removed {revoked} expired revocation entries and {refreshed} expired refresh tokens.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fifteen-accounts",
        description="Manage accounts in the Fifteen account database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py register asdfg12345 --name "Kim"
  echo 'TestPassword123!' | python main.py withdraw asdfg12345 --password-stdin
  python main.py purge
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Create a new account")
    register.add_argument("username", help="10-20 letters and digits")
    register.add_argument("--name", default="", help="Display name")
    register.add_argument("--email", default=None, help="Optional email address")
    register.add_argument("--bio", default=None, help="Optional one-line introduction")
    register.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")
    register.set_defaults(handler=_register)

    withdraw = commands.add_parser("withdraw", help="Withdraw an account (irreversible)")
    withdraw.add_argument("username")
    withdraw.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")
    withdraw.set_defaults(handler=_withdraw)

    purge = commands.add_parser("purge", help="Delete expired revocation entries and refresh tokens")
    purge.set_defaults(handler=_purge)

    return parser


def main(argv: Optional[list[str]] = None, service: Optional[AccountService] = None) -> int:
    args = build_parser().parse_args(argv)
    engine = None
    if service is None:
        settings = get_settings()
        engine = open_engine(settings.database_url)
        service = build_account_service(settings, engine)
    try:
        return args.handler(service, args)
    finally:
        if engine is not None:
            engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
