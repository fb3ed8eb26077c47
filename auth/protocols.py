"""
auth/protocols.py -- Collaborator contracts consumed by AccountService.

AccountService depends on these structural types, not on auth/store.py or
auth/tokens.py directly, so any implementation (SQLAlchemy, an in-memory fake,
a MagicMock in tests) can be passed to its constructor.

Store methods raise StorageUnavailableError when the backend cannot be reached.
AccountStore.save raises DuplicateUsernameError on a uniqueness violation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from auth.models import AccessToken, Account, RefreshToken


@runtime_checkable
class PasswordHasher(Protocol):
    """One-way password hashing."""

    def hash(self, plaintext: str) -> str:
        ...

    def verify(self, plaintext: str, hashed: str) -> bool:
        ...


@runtime_checkable
class AccountStore(Protocol):
    """Lookup and persistence of Account records by username."""

    def exists_by_username(self, username: str) -> bool:
        ...

    def find_by_username(self, username: str) -> Account | None:
        ...

    def find_by_id(self, account_id: int) -> Account | None:
        ...

    def save(self, account: Account) -> Account:
        """Insert when account.id is None, update otherwise. Returns the stored account."""
        ...


@runtime_checkable
class RefreshTokenStore(Protocol):
    """At most one refresh token per account; issuing replaces the previous one."""

    def issue(
        self,
        account: Account,
        access_token_id: str | None = None,
        access_expires_at: datetime | None = None,
    ) -> RefreshToken:
        ...

    def rotate(
        self,
        account: Account,
        access_token_id: str | None = None,
        access_expires_at: datetime | None = None,
    ) -> tuple[RefreshToken, RefreshToken | None]:
        """Like issue(), but also return the token it atomically replaced."""
        ...

    def get(self, token: str) -> RefreshToken | None:
        ...

    def get_by_account(self, account: Account) -> RefreshToken | None:
        ...

    def delete_by_account(self, account: Account) -> None:
        ...


@runtime_checkable
class RevokedTokenStore(Protocol):
    """Access-token identifiers that must be rejected until natural expiry."""

    def revoke(self, token_id: str, username: str, expires_at: datetime) -> None:
        ...

    def is_revoked(self, token_id: str) -> bool:
        ...


@runtime_checkable
class AccessTokenIssuer(Protocol):
    """Mints short-lived access tokens for an authenticated account."""

    def issue(self, account: Account) -> AccessToken:
        ...
