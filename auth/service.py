"""
auth/service.py -- Account lifecycle: registration, login, logout, withdrawal.

AccountService owns the account state machine (NORMAL -> WITHDRAWN, terminal)
and orchestrates the collaborators it is constructed with. It holds no caches
and no mutable state of its own beyond a lazily computed dummy hash, so one
instance can serve concurrent requests.

Every public operation returns an Outcome. Expected failures come back as
AccountError values; StorageUnavailableError from any store is converted to a
STORAGE_UNAVAILABLE outcome by the _storage_guard decorator. Anything else
propagates as a genuine fault.

Write ordering (no cross-store transactions are assumed):
  logout    revoke access token -> delete refresh token
  withdraw  revoke access token(s) -> delete refresh token -> flip status
A failure part-way through therefore never leaves a NORMAL account with a
live session that should have been killed, or a WITHDRAWN account with one.

Raw passwords and hashes are never logged or placed in an AccountError.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth import validators
from auth.errors import AccountError, DuplicateUsernameError, Outcome, StorageUnavailableError
from auth.models import Account, AccountStatus, AccountView, LoginResult, RefreshToken
from auth.protocols import AccessTokenIssuer, AccountStore, PasswordHasher, RefreshTokenStore, RevokedTokenStore

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from core.config import Settings

logger = logging.getLogger("fifteen.accounts")

_DUMMY_PASSWORD = "fifteen_timing_dummy_1!"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _storage_guard(method):
    """Convert StorageUnavailableError raised by a store into a failed Outcome."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except StorageUnavailableError as exc:
            logger.error("%s aborted: storage unavailable (%s)", method.__name__, exc)
            return Outcome.failure(AccountError.storage_unavailable())

    return wrapper


class AccountService:
    """Account lifecycle operations over injected stores, hasher and token issuer.

    Usage:
        service = AccountService(accounts, refresh_tokens, revoked_tokens, hasher, access_tokens)
        outcome = service.register("asdfg12345", "TestPassword123!", name="Kim")
        if outcome.ok:
            login = service.login("asdfg12345", "TestPassword123!").value
    """

    def __init__(
        self,
        accounts: AccountStore,
        refresh_tokens: RefreshTokenStore,
        revoked_tokens: RevokedTokenStore,
        hasher: PasswordHasher,
        access_tokens: AccessTokenIssuer,
        access_token_ttl: int = 1800,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.accounts = accounts
        self.refresh_tokens = refresh_tokens
        self.revoked_tokens = revoked_tokens
        self.hasher = hasher
        self.access_tokens = access_tokens
        self.access_token_ttl = access_token_ttl
        self._clock = clock
        self._dummy_hash: str | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @_storage_guard
    def register(
        self,
        username: str,
        password: str,
        name: str = "",
        email: str | None = None,
        bio: str | None = None,
    ) -> Outcome[AccountView]:
        """Create a NORMAL account.

        Input is validated before any store access. Uniqueness is checked
        first for a cheap early answer; the store's unique constraint is the
        real authority and a DuplicateUsernameError from save() (two
        concurrent registrations) also resolves to ALREADY_EXISTS.
        """
        error = _validate_registration(username, password, email)
        if error is not None:
            logger.warning("Registration rejected: %s (%s)", error.kind.value, error.field)
            return Outcome.failure(error)

        if self.accounts.exists_by_username(username):
            logger.warning("Registration rejected: username %s already exists", username)
            return Outcome.failure(AccountError.already_exists(username))

        now = self._clock()
        account = Account(
            username=username,
            password_hash=self.hasher.hash(password),
            display_name=name or "",
            email=email or None,
            bio=bio or None,
            status=AccountStatus.NORMAL,
            status_changed_at=now,
            created_at=now,
            modified_at=now,
        )
        try:
            saved = self.accounts.save(account)
        except DuplicateUsernameError:
            logger.warning("Registration lost a race for username %s", username)
            return Outcome.failure(AccountError.already_exists(username))

        logger.info("Registered account %s (id=%s)", saved.username, saved.id)
        return Outcome.success(AccountView.from_account(saved))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @_storage_guard
    def login(self, username: str, password: str) -> Outcome[LoginResult]:
        """Verify credentials and open a new session, replacing any previous one."""
        account = self.accounts.find_by_username(username)
        if account is None:
            self._equalize_timing(password)
            logger.warning("Login failed: unknown username %s", username)
            return Outcome.failure(AccountError.not_found(username))
        if account.is_withdrawn:
            logger.warning("Login refused: account %s is withdrawn", username)
            return Outcome.failure(AccountError.withdrawn(username))
        if not self.hasher.verify(password, account.password_hash):
            logger.warning("Login failed: bad password for %s", username)
            return Outcome.failure(AccountError.invalid_credentials())

        result = self._open_session(account)
        logger.info("Login succeeded for %s", username)
        return Outcome.success(result)

    @_storage_guard
    def refresh(self, token: str) -> Outcome[LoginResult]:
        """Rotate a refresh token: the presented one stops resolving on success."""
        session = self.refresh_tokens.get(token) if token else None
        if session is None or session.is_expired(self._clock()):
            logger.warning("Refresh rejected: unknown or expired refresh token")
            return Outcome.failure(AccountError.invalid_token())

        account = self.accounts.find_by_id(session.account_id)
        if account is None:
            logger.warning("Refresh rejected: account %s no longer exists", session.account_id)
            return Outcome.failure(AccountError.invalid_token())
        if account.is_withdrawn:
            logger.warning("Refresh refused: account %s is withdrawn", account.username)
            return Outcome.failure(AccountError.withdrawn(account.username))

        result = self._open_session(account)
        logger.info("Refresh token rotated for %s", account.username)
        return Outcome.success(result)

    @_storage_guard
    def logout(
        self,
        username: str,
        access_token_id: str,
        expires_at: datetime | None = None,
    ) -> Outcome[None]:
        """End the account's session and revoke the presented access token.

        expires_at should be the access token's own expiry; when unknown the
        revocation entry outlives any token this service could have issued.
        Logging out twice succeeds both times.
        """
        account = self.accounts.find_by_username(username)
        if account is None:
            logger.warning("Logout for unknown username %s", username)
            return Outcome.failure(AccountError.not_found(username))

        self.revoked_tokens.revoke(access_token_id, account.username, expires_at or self._default_expiry())
        self.refresh_tokens.delete_by_account(account)
        logger.info("Logged out %s", username)
        return Outcome.success(None)

    # ------------------------------------------------------------------
    # Withdrawal
    # ------------------------------------------------------------------

    @_storage_guard
    def withdraw(
        self,
        username: str,
        password: str,
        access_token_id: str | None = None,
        access_expires_at: datetime | None = None,
    ) -> Outcome[None]:
        """Move a NORMAL account to WITHDRAWN after re-checking its password.

        Session material is destroyed before the status flips: the access
        token recorded with the current session and, if different, the one
        the caller presented are revoked, then the refresh token is deleted.
        """
        account = self.accounts.find_by_username(username)
        if account is None:
            self._equalize_timing(password)
            logger.warning("Withdrawal failed: unknown username %s", username)
            return Outcome.failure(AccountError.not_found(username))
        if account.is_withdrawn:
            logger.warning("Withdrawal refused: account %s already withdrawn", username)
            return Outcome.failure(AccountError.withdrawn(username))
        if not self.hasher.verify(password, account.password_hash):
            logger.warning("Withdrawal failed: bad password for %s", username)
            return Outcome.failure(AccountError.invalid_credentials())

        session = self.refresh_tokens.get_by_account(account)
        if session is not None:
            self._revoke_session(account, session)
        if access_token_id and (session is None or access_token_id != session.access_token_id):
            self.revoked_tokens.revoke(access_token_id, account.username, access_expires_at or self._default_expiry())
        self.refresh_tokens.delete_by_account(account)

        now = self._clock()
        self.accounts.save(
            replace(account, status=AccountStatus.WITHDRAWN, status_changed_at=now, modified_at=now)
        )
        logger.info("Account %s withdrawn", username)
        return Outcome.success(None)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @_storage_guard
    def get_account(self, username: str) -> Outcome[AccountView]:
        account = self.accounts.find_by_username(username)
        if account is None:
            return Outcome.failure(AccountError.not_found(username))
        return Outcome.success(AccountView.from_account(account))

    @_storage_guard
    def check_access(self, username: str, access_token_id: str) -> Outcome[Account]:
        """Decide whether a cryptographically valid access token may still be used.

        Rejected when its identifier has been revoked, when the account is
        gone, or when the account has been withdrawn.
        """
        if self.revoked_tokens.is_revoked(access_token_id):
            return Outcome.failure(AccountError.invalid_token())
        account = self.accounts.find_by_username(username)
        if account is None:
            return Outcome.failure(AccountError.not_found(username))
        if account.is_withdrawn:
            return Outcome.failure(AccountError.withdrawn(username))
        return Outcome.success(account)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_session(self, account: Account) -> LoginResult:
        """Issue an access/refresh pair, revoking the access token of the session it replaces.

        The previous session is revoked up front, then again from the row the
        store actually replaced in case a concurrent login slipped in between.
        """
        previous = self.refresh_tokens.get_by_account(account)
        if previous is not None:
            self._revoke_session(account, previous)
        access = self.access_tokens.issue(account)
        refresh, replaced = self.refresh_tokens.rotate(account, access.token_id, access.expires_at)
        if replaced is not None and (previous is None or replaced.access_token_id != previous.access_token_id):
            self._revoke_session(account, replaced)
        return LoginResult(
            account=AccountView.from_account(account, refresh),
            access_token=access,
            refresh_token=refresh,
        )

    def _revoke_session(self, account: Account, session: RefreshToken) -> None:
        if session.access_token_id:
            self.revoked_tokens.revoke(
                session.access_token_id,
                account.username,
                session.access_expires_at or self._default_expiry(),
            )

    def _default_expiry(self) -> datetime:
        return self._clock() + timedelta(seconds=self.access_token_ttl)

    def _equalize_timing(self, password: str) -> None:
        """Spend one hash verification so unknown usernames cost the same as wrong passwords."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(_DUMMY_PASSWORD)
        self.hasher.verify(password or "", self._dummy_hash)


def _validate_registration(username: str, password: str, email: str | None) -> AccountError | None:
    """Run the field checks in order and return the first failure.

    Order: username format, email format, password length, password
    composition. A short password is reported as PASSWORD_TOO_SHORT even when
    it would also fail the composition rule.
    """
    error = validators.validate_username(username) or validators.validate_email(email)
    if error is not None:
        return error
    if validators.password_too_short(password):
        return AccountError.password_too_short(validators.PASSWORD_MIN_LENGTH)
    return validators.validate_password(password)


def build_account_service(settings: Settings, engine: Engine) -> AccountService:
    """Wire the SQL stores, bcrypt hasher and JWT codec into an AccountService."""
    from auth.store import SqlAccountStore, SqlRefreshTokenStore, SqlRevokedTokenStore
    from auth.tokens import BcryptHasher, JWTCodec

    return AccountService(
        accounts=SqlAccountStore(engine),
        refresh_tokens=SqlRefreshTokenStore(engine, ttl_seconds=settings.refresh_token_expire_seconds),
        revoked_tokens=SqlRevokedTokenStore(engine),
        hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
        access_tokens=JWTCodec.from_settings(settings),
        access_token_ttl=settings.access_token_expire_seconds,
    )
