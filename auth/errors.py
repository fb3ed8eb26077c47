"""
auth/errors.py -- Error taxonomy for the account lifecycle core.

Expected, caller-recoverable conditions (bad input, duplicate username, wrong
password, withdrawn account) are returned as values inside an Outcome rather
than raised. The request layer maps each ErrorKind to a response.

Exceptions are reserved for the store boundary:
  StorageUnavailableError -- the backing database could not be reached.
  DuplicateUsernameError  -- the unique constraint on username fired. A benign
                             race between two registrations of one username
                             surfaces here and resolves to ALREADY_EXISTS.

Nothing in this module ever carries a raw password or a password hash.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_FORMAT = "invalid_format"
    PASSWORD_TOO_SHORT = "password_too_short"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    WITHDRAWN = "withdrawn"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"
    STORAGE_UNAVAILABLE = "storage_unavailable"


@dataclass(frozen=True)
class AccountError:
    """A typed failure. field names the offending input for INVALID_FORMAT."""

    kind: ErrorKind
    message: str
    field: str | None = None
    username: str | None = None

    @classmethod
    def invalid_format(cls, field: str, message: str) -> "AccountError":
        return cls(ErrorKind.INVALID_FORMAT, message, field=field)

    @classmethod
    def password_too_short(cls, minimum: int) -> "AccountError":
        return cls(
            ErrorKind.PASSWORD_TOO_SHORT,
            f"Password must be at least {minimum} characters long.",
            field="password",
        )

    @classmethod
    def already_exists(cls, username: str) -> "AccountError":
        return cls(ErrorKind.ALREADY_EXISTS, "Username already exists.", username=username)

    @classmethod
    def not_found(cls, username: str) -> "AccountError":
        return cls(ErrorKind.NOT_FOUND, "Account not found.", username=username)

    @classmethod
    def withdrawn(cls, username: str) -> "AccountError":
        return cls(ErrorKind.WITHDRAWN, "Account has been withdrawn.", username=username)

    @classmethod
    def invalid_credentials(cls) -> "AccountError":
        return cls(ErrorKind.INVALID_CREDENTIALS, "Invalid username or password.")

    @classmethod
    def invalid_token(cls) -> "AccountError":
        return cls(ErrorKind.INVALID_TOKEN, "Invalid or expired refresh token.")

    @classmethod
    def storage_unavailable(cls) -> "AccountError":
        return cls(ErrorKind.STORAGE_UNAVAILABLE, "Account storage is temporarily unavailable.")

    def to_dict(self) -> dict:
        payload = {"code": self.kind.value, "message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result returned by every AccountService operation.

    Exactly one of value / error is meaningful. Check .ok before reading value:

        outcome = service.login(username, password)
        if not outcome.ok:
            handle(outcome.error.kind)
    """

    value: T | None = None
    error: AccountError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AccountError) -> "Outcome[T]":
        return cls(error=error)


class StorageUnavailableError(Exception):
    """A store could not complete an operation because its backend is unreachable."""


class DuplicateUsernameError(Exception):
    """An insert violated the username uniqueness constraint."""

    def __init__(self, username: str) -> None:
        super().__init__(f"username already taken: {username}")
        self.username = username
