"""
Tests for the in-memory account store and the SQL row mapping.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from broker.errors import ConfigurationError
from broker.models import AccountStatus, LinkedAccount
from broker.store import AccountStore, InMemoryAccountStore
from connectors.encryption import TokenCipher
from connectors.providers import Provider
from database.account_store import SqlAccountStore, apply_account_to_row, row_to_account
from database.models import LinkedAccountRow
from database.session import create_tables, make_engine, make_session_factory

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _account(**overrides):
    values = dict(
        owner_id="u1",
        provider=Provider.TWITTER,
        provider_user_id="tw-42",
        username="alice",
        access_token="at-1",
        refresh_token="rt-1",
        expires_at=T0 + timedelta(hours=2),
        scopes=["tweet.read"],
        linked_at=T0,
    )
    values.update(overrides)
    return LinkedAccount(**values)


class TestLinkedAccount:
    def test_public_view_has_no_tokens(self):
        view = _account().public_view()
        assert "at-1" not in str(view)
        assert "rt-1" not in str(view)
        assert view["provider"] == "twitter"
        assert view["status"] == "active"

    def test_repr_has_no_tokens(self):
        text = repr(_account())
        assert "at-1" not in text
        assert "rt-1" not in text


class TestInMemoryStore:
    def test_implements_contract(self):
        assert isinstance(InMemoryAccountStore(), AccountStore)

    @pytest.mark.asyncio
    async def test_upsert_merges_same_identity(self):
        store = InMemoryAccountStore()
        first = await store.upsert_account(_account())
        second = await store.upsert_account(_account(access_token="at-2", refresh_token=None))
        assert second.id == first.id
        assert second.access_token == "at-2"
        assert second.refresh_token == "rt-1"
        assert len(await store.list_accounts("u1")) == 1

    @pytest.mark.asyncio
    async def test_distinct_identities_are_separate(self):
        store = InMemoryAccountStore()
        await store.upsert_account(_account())
        await store.upsert_account(_account(provider_user_id="tw-99", linked_at=T0 + timedelta(days=1)))
        assert len(await store.list_accounts("u1")) == 2
        latest = await store.get_account("u1", Provider.TWITTER)
        assert latest.provider_user_id == "tw-99"

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self):
        store = InMemoryAccountStore()
        stored = await store.upsert_account(_account())
        stored.access_token = "mutated"
        assert (await store.get_account_by_id(stored.id)).access_token == "at-1"

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryAccountStore()
        stored = await store.upsert_account(_account())
        assert await store.delete_account(stored.id) is True
        assert await store.delete_account(stored.id) is False
        assert await store.get_account("u1", Provider.TWITTER) is None


class TestTokenCipher:
    def test_round_trip_with_key(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        assert cipher.enabled
        encrypted = cipher.encrypt("secret-token")
        assert encrypted != "secret-token"
        assert cipher.decrypt(encrypted) == "secret-token"

    def test_without_key_is_plaintext(self):
        cipher = TokenCipher("")
        assert not cipher.enabled
        assert cipher.encrypt("tok") == "tok"

    def test_none_passes_through(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        assert cipher.encrypt(None) is None
        assert cipher.decrypt(None) is None

    def test_legacy_plaintext_is_readable(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        assert cipher.decrypt("plain-old-token") == "plain-old-token"

    def test_invalid_key(self):
        with pytest.raises(ConfigurationError):
            TokenCipher("not-a-fernet-key")


class TestRowMapping:
    def test_tokens_encrypted_on_row(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        row = LinkedAccountRow(account_id="a1")
        apply_account_to_row(_account(id="a1"), row, cipher)
        assert row.access_token != "at-1"
        assert row.refresh_token != "rt-1"
        assert row.provider == "twitter"
        assert row.status == "active"

        back = row_to_account(row, cipher)
        assert back.id == "a1"
        assert back.access_token == "at-1"
        assert back.refresh_token == "rt-1"
        assert back.provider is Provider.TWITTER
        assert back.expires_at == T0 + timedelta(hours=2)

    def test_missing_refresh_token_keeps_stored_one(self):
        cipher = TokenCipher("")
        row = LinkedAccountRow(account_id="a1")
        apply_account_to_row(_account(id="a1"), row, cipher)
        apply_account_to_row(_account(id="a1", access_token="at-2", refresh_token=None), row, cipher)
        assert row.access_token == "at-2"
        assert row.refresh_token == "rt-1"

    def test_missing_identity_maps_to_empty_string(self):
        cipher = TokenCipher("")
        row = LinkedAccountRow(account_id="a1")
        apply_account_to_row(
            _account(id="a1", provider_user_id=None, status=AccountStatus.REAUTH_REQUIRED), row, cipher
        )
        assert row.provider_user_id == ""
        back = row_to_account(row, cipher)
        assert back.provider_user_id is None
        assert back.status is AccountStatus.REAUTH_REQUIRED

    def test_sql_store_implements_contract(self):
        assert isinstance(SqlAccountStore(None, TokenCipher("")), AccountStore)


async def _sql_store(db_path, key=None):
    engine = make_engine(f"sqlite+aiosqlite:///{db_path}")
    await create_tables(engine)
    return engine, SqlAccountStore(make_session_factory(engine), TokenCipher(key))


class TestSqlAccountStore:
    @pytest.mark.asyncio
    async def test_upsert_merges_same_identity(self, tmp_path):
        engine, store = await _sql_store(tmp_path / "accounts.db")
        try:
            first = await store.upsert_account(_account())
            second = await store.upsert_account(_account(access_token="at-2", refresh_token=None))
            assert second.id == first.id
            assert second.access_token == "at-2"
            assert second.refresh_token == "rt-1"
            assert len(await store.list_accounts("u1")) == 1
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_get_account_returns_most_recent(self, tmp_path):
        engine, store = await _sql_store(tmp_path / "accounts.db")
        try:
            await store.upsert_account(_account())
            await store.upsert_account(_account(provider_user_id="tw-99", linked_at=T0 + timedelta(days=1)))
            latest = await store.get_account("u1", Provider.TWITTER)
            assert latest.provider_user_id == "tw-99"
            assert latest.linked_at == T0 + timedelta(days=1)
            assert await store.get_account("u1", Provider.REDDIT) is None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        engine, store = await _sql_store(tmp_path / "accounts.db")
        try:
            stored = await store.upsert_account(_account())
            assert await store.delete_account(stored.id) is True
            assert await store.delete_account(stored.id) is False
            assert await store.get_account_by_id(stored.id) is None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_accounts_survive_restart(self, tmp_path):
        key = Fernet.generate_key().decode()
        db_path = tmp_path / "accounts.db"
        engine, store = await _sql_store(db_path, key)
        stored = await store.upsert_account(_account(status=AccountStatus.REAUTH_REQUIRED))
        await engine.dispose()

        engine, store = await _sql_store(db_path, key)
        try:
            reloaded = await store.get_account_by_id(stored.id)
            assert reloaded.access_token == "at-1"
            assert reloaded.refresh_token == "rt-1"
            assert reloaded.status is AccountStatus.REAUTH_REQUIRED
            assert reloaded.expires_at == T0 + timedelta(hours=2)
            assert reloaded.expires_at.tzinfo is not None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_lost_insert_race_becomes_update(self, tmp_path):
        engine, store = await _sql_store(tmp_path / "accounts.db")
        try:
            winner = await store.upsert_account(_account())
            original_find = SqlAccountStore._find_row
            calls = []

            async def miss_once(self, session, account):
                calls.append(account.id)
                if len(calls) == 1:
                    return None
                return await original_find(self, session, account)

            with patch.object(SqlAccountStore, "_find_row", miss_once):
                loser = await store.upsert_account(_account(access_token="at-2"))

            assert len(calls) == 2
            assert loser.id == winner.id
            assert loser.access_token == "at-2"
            assert len(await store.list_accounts("u1")) == 1
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_concurrent_links_of_same_identity(self, tmp_path):
        engine, store = await _sql_store(tmp_path / "accounts.db")
        try:
            results = await asyncio.gather(
                *(store.upsert_account(_account(access_token=f"at-{n}")) for n in range(5))
            )
            assert len({r.id for r in results}) == 1
            assert len(await store.list_accounts("u1")) == 1
        finally:
            await engine.dispose()
