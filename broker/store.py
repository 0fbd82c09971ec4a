"""
Account store contract and the in-memory implementation.

The broker only depends on :class:`AccountStore`; the SQL-backed
implementation lives in ``database.account_store``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

from broker.models import LinkedAccount
from connectors.providers import Provider

logger = logging.getLogger(__name__)


@runtime_checkable
class AccountStore(Protocol):
    async def get_account(self, owner_id: str, provider: Provider) -> Optional[LinkedAccount]:
        """Most recently linked account for (owner, provider), or None."""
        ...

    async def get_account_by_id(self, account_id: str) -> Optional[LinkedAccount]:
        ...

    async def list_accounts(self, owner_id: str) -> List[LinkedAccount]:
        ...

    async def upsert_account(self, account: LinkedAccount) -> LinkedAccount:
        """
        Insert, or update the row with the same
        (owner_id, provider, provider_user_id).  Returns the stored account.
        """
        ...

    async def delete_account(self, account_id: str) -> bool:
        ...


class InMemoryAccountStore:
    """Dict-backed store for tests and single-process local runs."""

    def __init__(self) -> None:
        self._accounts: Dict[str, LinkedAccount] = {}
        self._lock = asyncio.Lock()

    async def get_account(self, owner_id: str, provider: Provider) -> Optional[LinkedAccount]:
        matches = [
            a for a in self._accounts.values()
            if a.owner_id == owner_id and a.provider == provider
        ]
        if not matches:
            return None
        return max(matches, key=lambda a: a.linked_at).model_copy()

    async def get_account_by_id(self, account_id: str) -> Optional[LinkedAccount]:
        account = self._accounts.get(account_id)
        return account.model_copy() if account else None

    async def list_accounts(self, owner_id: str) -> List[LinkedAccount]:
        return [a.model_copy() for a in self._accounts.values() if a.owner_id == owner_id]

    async def upsert_account(self, account: LinkedAccount) -> LinkedAccount:
        async with self._lock:
            existing = next(
                (
                    a for a in self._accounts.values()
                    if a.identity_key == account.identity_key and a.id != account.id
                ),
                None,
            )
            if existing is not None:
                stored = account.model_copy(update={"id": existing.id})
                if stored.refresh_token is None:
                    stored.refresh_token = existing.refresh_token
                logger.info("Updated %s account %s", account.provider.value, existing.id)
            else:
                stored = account.model_copy()
            self._accounts[stored.id] = stored
            return stored.model_copy()

    async def delete_account(self, account_id: str) -> bool:
        async with self._lock:
            return self._accounts.pop(account_id, None) is not None
