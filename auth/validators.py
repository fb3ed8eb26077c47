"""
auth/validators.py -- Credential shape checks for registration input.

Pure functions, no state and no store access. Each returns None when the value
is acceptable or an AccountError naming the offending field, so callers can
compose them in an explicit order and stop at the first failure.

Policy:
  username  10-20 characters, ASCII letters and digits only.
  password  at least 10 characters containing a letter, a digit and one of
            the symbols !@#$%^&*?_
  email     optional; when non-empty it must be syntactically valid.
"""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email as _check_email

from auth.errors import AccountError

USERNAME_MIN_LENGTH = 10
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 10
PASSWORD_SYMBOLS = "!@#$%^&*?_"

_USERNAME_RE = re.compile(r"[a-zA-Z0-9]+")
_LETTER_RE = re.compile(r"[a-zA-Z]")
_DIGIT_RE = re.compile(r"[0-9]")
_SYMBOL_RE = re.compile(f"[{re.escape(PASSWORD_SYMBOLS)}]")


def validate_username(value: str | None) -> AccountError | None:
    if not value or not USERNAME_MIN_LENGTH <= len(value) <= USERNAME_MAX_LENGTH:
        return AccountError.invalid_format(
            "username",
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters long.",
        )
    if not _USERNAME_RE.fullmatch(value):
        return AccountError.invalid_format("username", "Username may contain only letters and digits.")
    return None


def password_too_short(value: str | None) -> bool:
    """True when the raw password is under the minimum length.

    Registration reports this as its own error kind ahead of the composition
    check, so a short password is never described as merely malformed.
    """
    return len(value or "") < PASSWORD_MIN_LENGTH


def validate_password(value: str | None) -> AccountError | None:
    if password_too_short(value):
        return AccountError.invalid_format(
            "password", f"Password must be at least {PASSWORD_MIN_LENGTH} characters long."
        )
    if not (_LETTER_RE.search(value) and _DIGIT_RE.search(value) and _SYMBOL_RE.search(value)):
        return AccountError.invalid_format(
            "password",
            f"Password must contain a letter, a digit and one of {PASSWORD_SYMBOLS}",
        )
    return None


def validate_email(value: str | None) -> AccountError | None:
    """Empty or missing email is allowed; anything else must parse as an address."""
    if not value:
        return None
    try:
        _check_email(value, check_deliverability=False)
    except EmailNotValidError:
        return AccountError.invalid_format("email", "Email address is not valid.")
    return None
