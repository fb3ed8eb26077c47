"""
tests/test_store.py -- Unit tests for the SQLAlchemy Core repositories in auth/store.py.

Covers:
  - SqlAccountStore: insert assigns an id, lookups by username/id, duplicate
    usernames raise DuplicateUsernameError, updates never rename
  - SqlRefreshTokenStore: issue replaces the previous token (one per account),
    delete is idempotent, purge_expired drops only expired rows
  - SqlRevokedTokenStore: revoke is idempotent, is_revoked, purge_expired
  - OperationalError from the engine surfaces as StorageUnavailableError
  - the SQL stores and token helpers satisfy the auth.protocols contracts
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import DuplicateUsernameError, StorageUnavailableError
from auth.models import Account, AccountStatus
from auth.protocols import AccessTokenIssuer, AccountStore, PasswordHasher, RefreshTokenStore, RevokedTokenStore
from auth.store import SqlRefreshTokenStore, check_database


def _account(username: str = "asdfg12345") -> Account:
    return Account(username=username, password_hash="$2b$04$notarealhashbutopaque", display_name="Kim")


def _offline(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestAccountStore:
    def test_insert_assigns_id(self, account_store) -> None:
        saved = account_store.save(_account())
        assert saved.id is not None
        assert saved.created_at is not None

    def test_find_by_username_and_id(self, account_store) -> None:
        saved = account_store.save(_account())
        by_name = account_store.find_by_username("asdfg12345")
        by_id = account_store.find_by_id(saved.id)
        assert by_name.id == saved.id
        assert by_id.username == "asdfg12345"
        assert by_name.display_name == "Kim"
        assert by_name.status is AccountStatus.NORMAL

    def test_lookup_is_case_sensitive(self, account_store) -> None:
        account_store.save(_account())
        assert account_store.find_by_username("ASDFG12345") is None
        assert account_store.exists_by_username("ASDFG12345") is False

    def test_missing_account(self, account_store) -> None:
        assert account_store.find_by_username("nobody12345") is None
        assert account_store.find_by_id(999) is None
        assert account_store.exists_by_username("nobody12345") is False

    def test_duplicate_username_raises(self, account_store) -> None:
        account_store.save(_account())
        with pytest.raises(DuplicateUsernameError) as exc_info:
            account_store.save(_account())
        assert exc_info.value.username == "asdfg12345"

    def test_store_usable_after_duplicate(self, account_store) -> None:
        account_store.save(_account())
        with pytest.raises(DuplicateUsernameError):
            account_store.save(_account())
        assert account_store.save(_account("qwert67890")).id is not None

    def test_update_persists_status(self, account_store) -> None:
        saved = account_store.save(_account())
        now = datetime.now(timezone.utc)
        account_store.save(replace(saved, status=AccountStatus.WITHDRAWN, status_changed_at=now))
        reloaded = account_store.find_by_id(saved.id)
        assert reloaded.status is AccountStatus.WITHDRAWN
        assert reloaded.status_changed_at == now

    def test_update_never_renames(self, account_store) -> None:
        saved = account_store.save(_account())
        account_store.save(replace(saved, username="renamed12345"))
        assert account_store.find_by_id(saved.id).username == "asdfg12345"

    def test_withdrawn_account_still_found(self, account_store) -> None:
        saved = account_store.save(_account())
        account_store.save(replace(saved, status=AccountStatus.WITHDRAWN))
        assert account_store.exists_by_username("asdfg12345") is True
        assert account_store.find_by_username("asdfg12345").is_withdrawn


class TestRefreshTokenStore:
    def test_issue_and_get(self, account_store, refresh_store) -> None:
        account = account_store.save(_account())
        issued = refresh_store.issue(account, "jti-1", datetime.now(timezone.utc))
        found = refresh_store.get(issued.token)
        assert found.account_id == account.id
        assert found.access_token_id == "jti-1"
        assert found.expires_at == issued.expires_at

    def test_issue_replaces_previous(self, account_store, refresh_store) -> None:
        account = account_store.save(_account())
        first = refresh_store.issue(account)
        second = refresh_store.issue(account)
        assert first.token != second.token
        assert refresh_store.get(first.token) is None
        assert refresh_store.get_by_account(account).token == second.token

    def test_rotate_returns_replaced_token(self, account_store, refresh_store) -> None:
        account = account_store.save(_account())
        first, replaced = refresh_store.rotate(account, "jti-1")
        assert replaced is None

        second, replaced = refresh_store.rotate(account, "jti-2")
        assert replaced.token == first.token
        assert replaced.access_token_id == "jti-1"
        assert refresh_store.get_by_account(account).token == second.token

    def test_tokens_are_per_account(self, account_store, refresh_store) -> None:
        kim = account_store.save(_account())
        lee = account_store.save(_account("qwert67890"))
        kim_token = refresh_store.issue(kim)
        refresh_store.issue(lee)
        assert refresh_store.get(kim_token.token).account_id == kim.id

    def test_delete_is_idempotent(self, account_store, refresh_store) -> None:
        account = account_store.save(_account())
        issued = refresh_store.issue(account)
        refresh_store.delete_by_account(account)
        refresh_store.delete_by_account(account)
        assert refresh_store.get(issued.token) is None
        assert refresh_store.get_by_account(account) is None

    def test_purge_expired(self, engine, account_store, refresh_store) -> None:
        live_account = account_store.save(_account())
        stale_account = account_store.save(_account("qwert67890"))
        live = refresh_store.issue(live_account)
        stale = SqlRefreshTokenStore(engine, ttl_seconds=-60).issue(stale_account)

        assert refresh_store.purge_expired() == 1
        assert refresh_store.get(live.token) is not None
        assert refresh_store.get(stale.token) is None


class TestRevokedTokenStore:
    def test_revoke_and_check(self, revoked_store) -> None:
        expires = datetime.now(timezone.utc) + timedelta(minutes=10)
        assert revoked_store.is_revoked("jti-1") is False
        revoked_store.revoke("jti-1", "asdfg12345", expires)
        assert revoked_store.is_revoked("jti-1") is True
        entry = revoked_store.get("jti-1")
        assert entry.username == "asdfg12345"
        assert entry.expires_at == expires

    def test_revoke_twice_is_noop(self, revoked_store) -> None:
        expires = datetime.now(timezone.utc) + timedelta(minutes=10)
        revoked_store.revoke("jti-1", "asdfg12345", expires)
        revoked_store.revoke("jti-1", "asdfg12345", expires)
        assert revoked_store.is_revoked("jti-1") is True

    def test_purge_expired(self, revoked_store) -> None:
        now = datetime.now(timezone.utc)
        revoked_store.revoke("old", "asdfg12345", now - timedelta(seconds=1))
        revoked_store.revoke("new", "asdfg12345", now + timedelta(minutes=10))
        assert revoked_store.purge_expired() == 1
        assert revoked_store.is_revoked("old") is False
        assert revoked_store.is_revoked("new") is True


class TestStorageUnavailable:
    def test_account_lookup(self, engine, account_store) -> None:
        with patch.object(engine, "connect", side_effect=_offline):
            with pytest.raises(StorageUnavailableError):
                account_store.find_by_username("asdfg12345")

    def test_account_save(self, engine, account_store) -> None:
        with patch.object(engine, "connect", side_effect=_offline):
            with pytest.raises(StorageUnavailableError):
                account_store.save(_account())

    def test_refresh_issue(self, engine, account_store, refresh_store) -> None:
        account = account_store.save(_account())
        with patch.object(engine, "begin", side_effect=_offline):
            with pytest.raises(StorageUnavailableError):
                refresh_store.issue(account)

    def test_revoke(self, engine, revoked_store) -> None:
        with patch.object(engine, "connect", side_effect=_offline):
            with pytest.raises(StorageUnavailableError):
                revoked_store.revoke("jti-1", "asdfg12345", datetime.now(timezone.utc))

    def test_check_database(self, engine) -> None:
        assert check_database(engine) is True
        with patch.object(engine, "connect", side_effect=_offline):
            assert check_database(engine) is False


class TestProtocolConformance:
    def test_sql_stores_satisfy_protocols(self, account_store, refresh_store, revoked_store) -> None:
        assert isinstance(account_store, AccountStore)
        assert isinstance(refresh_store, RefreshTokenStore)
        assert isinstance(revoked_store, RevokedTokenStore)

    def test_token_helpers_satisfy_protocols(self, hasher, codec) -> None:
        assert isinstance(hasher, PasswordHasher)
        assert isinstance(codec, AccessTokenIssuer)
