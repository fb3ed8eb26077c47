"""
auth/models.py -- Domain dataclasses for account lifecycle entities.

Pattern: Data class (pure data container). Stores and the service do the work;
the only behaviour here is the public projection factory on AccountView.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class AccountStatus(str, Enum):
    """Account state machine: NORMAL -> WITHDRAWN, one-way and terminal."""

    NORMAL = "NORMAL"
    WITHDRAWN = "WITHDRAWN"


@dataclass
class Account:
    """A registered identity with credentials and a status.

    username is unique across all accounts regardless of status and never
    changes after creation. password_hash is opaque and must never leave the
    core -- use AccountView for anything externally visible.

    Timestamps are set explicitly by AccountService at the point of mutation.
    """

    username: str
    password_hash: str
    display_name: str = ""
    email: str | None = None
    bio: str | None = None
    status: AccountStatus = AccountStatus.NORMAL
    id: int | None = None
    status_changed_at: datetime | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None

    @property
    def is_withdrawn(self) -> bool:
        return self.status is AccountStatus.WITHDRAWN

    def __repr__(self) -> str:
        # Keep the hash out of tracebacks and log lines.
        return f"Account(id={self.id!r}, username={self.username!r}, status={self.status.value})"


@dataclass
class RefreshToken:
    """The single active session credential of an account.

    access_token_id / access_expires_at record the access token issued
    alongside this refresh token so withdrawal can revoke it without the
    caller presenting it.
    """

    token: str
    account_id: int
    expires_at: datetime
    access_token_id: str | None = None
    access_expires_at: datetime | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return f"RefreshToken(account_id={self.account_id!r}, expires_at={self.expires_at.isoformat()})"


@dataclass
class RevokedAccessToken:
    """Marks an access-token identifier as unusable until its natural expiry."""

    token_id: str
    username: str
    expires_at: datetime
    revoked_at: datetime | None = None


@dataclass
class AccessToken:
    """A signed short-lived access token together with its identifier and expiry."""

    token: str
    token_id: str
    expires_at: datetime
    expires_in: int

    def __repr__(self) -> str:
        return f"AccessToken(token_id={self.token_id!r}, expires_at={self.expires_at.isoformat()})"


@dataclass(frozen=True)
class AccountView:
    """Externally visible projection of an Account. Never carries the hash."""

    id: int | None
    username: str
    name: str
    email: str | None
    bio: str | None
    status_code: str
    refresh_token: str | None
    created_at: datetime | None

    @classmethod
    def from_account(cls, account: Account, refresh_token: RefreshToken | None = None) -> "AccountView":
        return cls(
            id=account.id,
            username=account.username,
            name=account.display_name,
            email=account.email,
            bio=account.bio,
            status_code=account.status.value,
            refresh_token=refresh_token.token if refresh_token is not None else None,
            created_at=account.created_at,
        )


@dataclass(frozen=True)
class LoginResult:
    """Result of a successful login or refresh-token rotation."""

    account: AccountView
    access_token: AccessToken
    refresh_token: RefreshToken


@dataclass(frozen=True)
class CurrentSession:
    """An authenticated request: the account plus the access token it presented."""

    account: Account
    token_id: str
    expires_at: datetime
