"""
SqlAccountStore — AccountStore backed by async SQLAlchemy.

Tokens are encrypted with :class:`~connectors.encryption.TokenCipher`
before they are written and decrypted on read.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from broker.models import AccountStatus, LinkedAccount
from connectors.encryption import TokenCipher
from connectors.providers import Provider
from database.models import LinkedAccountRow

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_account(row: LinkedAccountRow, cipher: TokenCipher) -> LinkedAccount:
    return LinkedAccount(
        id=row.account_id,
        owner_id=row.owner_id,
        provider=Provider(row.provider),
        provider_user_id=row.provider_user_id or None,
        username=row.username,
        access_token=cipher.decrypt(row.access_token),
        refresh_token=cipher.decrypt(row.refresh_token) or None,
        expires_at=_aware(row.expires_at),
        scopes=row.scopes or [],
        status=AccountStatus(row.status),
        error_message=row.error_message,
        provider_meta=row.provider_meta or {},
        linked_at=_aware(row.linked_at),
        refreshed_at=_aware(row.refreshed_at),
    )


def apply_account_to_row(account: LinkedAccount, row: LinkedAccountRow, cipher: TokenCipher) -> None:
    """Copy *account* onto *row*; keeps the stored refresh token if none is given."""
    row.owner_id = account.owner_id
    row.provider = account.provider.value
    row.provider_user_id = account.provider_user_id or ""
    row.username = account.username or row.username
    row.access_token = cipher.encrypt(account.access_token)
    if account.refresh_token is not None or row.refresh_token is None:
        row.refresh_token = cipher.encrypt(account.refresh_token)
    row.expires_at = account.expires_at
    row.scopes = list(account.scopes)
    row.status = account.status.value
    row.error_message = account.error_message
    row.provider_meta = dict(account.provider_meta)
    row.linked_at = account.linked_at
    row.refreshed_at = account.refreshed_at


class SqlAccountStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cipher: TokenCipher):
        self._session_factory = session_factory
        self._cipher = cipher

    async def get_account(self, owner_id: str, provider: Provider) -> Optional[LinkedAccount]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LinkedAccountRow)
                .where(
                    LinkedAccountRow.owner_id == owner_id,
                    LinkedAccountRow.provider == provider.value,
                )
                .order_by(LinkedAccountRow.linked_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return row_to_account(row, self._cipher) if row else None

    async def get_account_by_id(self, account_id: str) -> Optional[LinkedAccount]:
        async with self._session_factory() as session:
            row = await session.get(LinkedAccountRow, account_id)
            return row_to_account(row, self._cipher) if row else None

    async def list_accounts(self, owner_id: str) -> List[LinkedAccount]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LinkedAccountRow).where(LinkedAccountRow.owner_id == owner_id)
            )
            return [row_to_account(r, self._cipher) for r in result.scalars().all()]

    async def upsert_account(self, account: LinkedAccount) -> LinkedAccount:
        try:
            return await self._upsert_once(account)
        except IntegrityError:
            # A concurrent link inserted the same identity first; update it instead.
            logger.info("Identity insert raced for %s account; retrying as update", account.provider.value)
            return await self._upsert_once(account)

    async def _find_row(self, session: AsyncSession, account: LinkedAccount) -> Optional[LinkedAccountRow]:
        result = await session.execute(
            select(LinkedAccountRow).where(
                LinkedAccountRow.owner_id == account.owner_id,
                LinkedAccountRow.provider == account.provider.value,
                LinkedAccountRow.provider_user_id == (account.provider_user_id or ""),
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = await session.get(LinkedAccountRow, account.id)
        return row

    async def _upsert_once(self, account: LinkedAccount) -> LinkedAccount:
        async with self._session_factory() as session:
            try:
                row = await self._find_row(session, account)
                if row is None:
                    row = LinkedAccountRow(account_id=account.id)
                    session.add(row)
                    logger.info("Created %s account %s", account.provider.value, account.id)
                else:
                    logger.info("Updated %s account %s", account.provider.value, row.account_id)
                apply_account_to_row(account, row, self._cipher)
                await session.commit()
                return row_to_account(row, self._cipher)
            except Exception:
                await session.rollback()
                raise

    async def delete_account(self, account_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(LinkedAccountRow).where(LinkedAccountRow.account_id == account_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0
