"""
auth/store.py -- SQLAlchemy Core persistence layer for account lifecycle entities.

Pattern: Repository + Data Mapper. Each store is a repository over one table;
_row_to_* functions are the mappers. The service never touches SQL directly.

Stores:
  SqlAccountStore       -- accounts table. username carries a UNIQUE constraint,
                           so check-then-insert races resolve at the database:
                           the loser gets DuplicateUsernameError.
  SqlRefreshTokenStore  -- refresh_tokens table. account_id is UNIQUE, which
                           enforces at most one session per account. issue()
                           deletes and inserts in a single transaction.
  SqlRevokedTokenStore  -- revoked_access_tokens table keyed by jti. Rows keep
                           the token's natural expiry so purge_expired() can
                           drop them once the token would be rejected anyway.

All three share one Engine created by open_engine(). Connectivity failures
(sqlalchemy OperationalError) are re-raised as StorageUnavailableError.

Security:
  All queries use bound parameters. Timestamps are stored as UTC ISO 8601
  strings with microsecond precision so lexical order equals time order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import DuplicateUsernameError, StorageUnavailableError
from auth.models import Account, AccountStatus, RefreshToken, RevokedAccessToken
from auth.tokens import generate_refresh_token

logger = logging.getLogger("fifteen.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'fifteen_accounts.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(20), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("display_name", String(100), nullable=False, server_default=""),
    Column("email", String(255)),
    Column("bio", Text),
    Column("status", String(16), nullable=False, server_default=AccountStatus.NORMAL.value),
    Column("status_changed_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("modified_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, unique=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("access_token_id", String(36)),
    Column("access_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_revoked_access_tokens = Table(
    "revoked_access_tokens",
    _metadata,
    Column("token_id", String(36), primary_key=True),
    Column("username", String(20), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("revoked_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    """Create an Engine for db_url and make sure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def check_database(engine: Engine) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except OperationalError:
        logger.exception("Database health check failed")
        return False
    return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate connectivity failures into StorageUnavailableError."""
    try:
        yield
    except OperationalError as exc:
        logger.error("Storage unavailable during %s: %s", operation, exc.orig)
        raise StorageUnavailableError(operation) from exc


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class SqlAccountStore:
    """Repository for Account records.

    Usage:
        engine = open_engine()
        store = SqlAccountStore(engine)
        account = store.save(Account(username="asdfg12345", password_hash=...))
        store.find_by_username("asdfg12345")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def exists_by_username(self, username: str) -> bool:
        with _storage_errors("exists_by_username"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).first()
        return row is not None

    def find_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive), any status."""
        with _storage_errors("find_by_username"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        with _storage_errors("find_by_id"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def save(self, account: Account) -> Account:
        """Insert a new account (id is None) or update an existing one.

        Raises DuplicateUsernameError if the username is already taken. The
        username column is never rewritten on update.
        """
        if account.id is None:
            return self._insert(account)
        with _storage_errors("update_account"), self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account.id)
                .values(
                    password_hash=account.password_hash,
                    display_name=account.display_name,
                    email=account.email,
                    bio=account.bio,
                    status=account.status.value,
                    status_changed_at=_to_iso(account.status_changed_at),
                    modified_at=_to_iso(account.modified_at or _now()),
                )
            )
            conn.commit()
        return account

    def _insert(self, account: Account) -> Account:
        created_at = account.created_at or _now()
        with _storage_errors("insert_account"), self.engine.connect() as conn:
            try:
                result = conn.execute(
                    _accounts.insert().values(
                        username=account.username,
                        password_hash=account.password_hash,
                        display_name=account.display_name,
                        email=account.email,
                        bio=account.bio,
                        status=account.status.value,
                        status_changed_at=_to_iso(account.status_changed_at),
                        created_at=_to_iso(created_at),
                        modified_at=_to_iso(account.modified_at or created_at),
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                conn.rollback()
                raise DuplicateUsernameError(account.username) from exc
        return replace(account, id=result.inserted_primary_key[0], created_at=created_at)


class SqlRefreshTokenStore:
    """Repository for refresh tokens. One row per account at most."""

    def __init__(self, engine: Engine, ttl_seconds: int = 14 * 24 * 3600) -> None:
        self.engine = engine
        self.ttl_seconds = ttl_seconds

    def issue(
        self,
        account: Account,
        access_token_id: str | None = None,
        access_expires_at: datetime | None = None,
    ) -> RefreshToken:
        """Create a fresh refresh token for account, replacing any existing one."""
        return self.rotate(account, access_token_id, access_expires_at)[0]

    def rotate(
        self,
        account: Account,
        access_token_id: str | None = None,
        access_expires_at: datetime | None = None,
    ) -> tuple[RefreshToken, RefreshToken | None]:
        """Replace the account's refresh token and return (new, replaced).

        Delete and insert run in one transaction, and the delete returns the
        row it removed, so the replaced session is exactly the one this call
        displaced even when logins for the same account race.
        """
        now = _now()
        refresh = RefreshToken(
            token=generate_refresh_token(),
            account_id=account.id,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            access_token_id=access_token_id,
            access_expires_at=access_expires_at,
            created_at=now,
        )
        with _storage_errors("issue_refresh_token"), self.engine.begin() as conn:
            replaced = conn.execute(
                _refresh_tokens.delete()
                .where(_refresh_tokens.c.account_id == account.id)
                .returning(*_refresh_tokens.c)
            ).fetchone()
            conn.execute(
                _refresh_tokens.insert().values(
                    account_id=refresh.account_id,
                    token=refresh.token,
                    expires_at=_to_iso(refresh.expires_at),
                    access_token_id=refresh.access_token_id,
                    access_expires_at=_to_iso(refresh.access_expires_at),
                    created_at=_to_iso(refresh.created_at),
                )
            )
        return refresh, _row_to_refresh_token(replaced) if replaced is not None else None

    def get(self, token: str) -> RefreshToken | None:
        """Resolve a refresh-token value. Expiry is left to the caller."""
        with _storage_errors("get_refresh_token"), self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get_by_account(self, account: Account) -> RefreshToken | None:
        with _storage_errors("get_refresh_token_by_account"), self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.account_id == account.id)
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_by_account(self, account: Account) -> None:
        """Remove the account's refresh token. A no-op when there is none."""
        with _storage_errors("delete_refresh_token"), self.engine.connect() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.account_id == account.id))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete refresh tokens past their expiry. Returns number of rows removed."""
        with _storage_errors("purge_refresh_tokens"), self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_iso(_now())))
            conn.commit()
        return result.rowcount


class SqlRevokedTokenStore:
    """Repository for revoked access-token identifiers."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def revoke(self, token_id: str, username: str, expires_at: datetime) -> None:
        """Record token_id as revoked until expires_at. Revoking twice is a no-op."""
        with _storage_errors("revoke_access_token"), self.engine.connect() as conn:
            try:
                conn.execute(
                    _revoked_access_tokens.insert().values(
                        token_id=token_id,
                        username=username,
                        expires_at=_to_iso(expires_at),
                        revoked_at=_to_iso(_now()),
                    )
                )
                conn.commit()
            except IntegrityError:
                conn.rollback()
                logger.debug("Access token %s already revoked", token_id)

    def is_revoked(self, token_id: str) -> bool:
        with _storage_errors("is_revoked"), self.engine.connect() as conn:
            row = conn.execute(
                _revoked_access_tokens.select().where(_revoked_access_tokens.c.token_id == token_id)
            ).first()
        return row is not None

    def get(self, token_id: str) -> RevokedAccessToken | None:
        with _storage_errors("get_revoked_token"), self.engine.connect() as conn:
            row = conn.execute(
                _revoked_access_tokens.select().where(_revoked_access_tokens.c.token_id == token_id)
            ).fetchone()
        return _row_to_revoked(row) if row is not None else None

    def purge_expired(self) -> int:
        """Delete entries whose token has expired naturally. Returns rows removed."""
        with _storage_errors("purge_revoked_tokens"), self.engine.connect() as conn:
            result = conn.execute(
                _revoked_access_tokens.delete().where(_revoked_access_tokens.c.expires_at <= _to_iso(_now()))
            )
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        display_name=row.display_name or "",
        email=row.email,
        bio=row.bio,
        status=AccountStatus(row.status),
        status_changed_at=_from_iso(row.status_changed_at),
        created_at=_from_iso(row.created_at),
        modified_at=_from_iso(row.modified_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        token=row.token,
        account_id=row.account_id,
        expires_at=_from_iso(row.expires_at),
        access_token_id=row.access_token_id,
        access_expires_at=_from_iso(row.access_expires_at),
        created_at=_from_iso(row.created_at),
    )


def _row_to_revoked(row) -> RevokedAccessToken:
    return RevokedAccessToken(
        token_id=row.token_id,
        username=row.username,
        expires_at=_from_iso(row.expires_at),
        revoked_at=_from_iso(row.revoked_at),
    )
