"""
Token refresher — keeps a linked account's access token usable.

Refresh policy (fail closed): when the provider rejects the refresh token,
or the account has none, the account is marked ``reauth_required``, the
pooled client for the old token is invalidated, and
``RefreshFailedError`` is raised.  The owner must link again; nothing
retries a rejected refresh.  Transient failures (network, 5xx) raise
``TokenExchangeError`` and leave the account untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from datetime import timedelta
from typing import Callable, Tuple

from broker.errors import RefreshFailedError
from broker.models import AccountStatus, LinkedAccount, as_datetime
from broker.pool import ClientPool, fingerprint
from broker.store import AccountStore
from connectors.registry import ConnectorRegistry

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW = 120.0  # seconds


def account_fingerprint(account: LinkedAccount) -> str:
    """Pool key for the client built from *account*'s current access token."""
    return fingerprint(account.access_token, account.provider.value)


class TokenRefresher:
    def __init__(
        self,
        connectors: ConnectorRegistry,
        store: AccountStore,
        pool: ClientPool,
        *,
        skew_seconds: float = DEFAULT_REFRESH_SKEW,
        clock: Callable[[], float] = time.time,
    ):
        self._connectors = connectors
        self._store = store
        self._pool = pool
        self._skew = timedelta(seconds=skew_seconds)
        self._clock = clock
        # Entries vanish once no caller holds or waits on the lock.
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, account: LinkedAccount) -> asyncio.Lock:
        """Per-account lock; held across refresh + invalidate."""
        key = (account.id, account.provider.value)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def needs_refresh(self, account: LinkedAccount) -> bool:
        return account.needs_refresh(as_datetime(self._clock()), self._skew)

    async def ensure_fresh(self, account: LinkedAccount, *, force: bool = False) -> LinkedAccount:
        """
        Return *account* with a usable access token, refreshing if it is
        within the skew window of ``expires_at`` (or when *force* is set).

        Raises
        ------
        RefreshFailedError – provider rejected the refresh; re-link required
        TokenExchangeError – transient provider failure
        """
        if account.status is AccountStatus.REAUTH_REQUIRED:
            raise RefreshFailedError(
                f"{account.provider.value} account must be re-linked", account_id=account.id
            )
        if not force and not self.needs_refresh(account):
            return account

        async with self.lock_for(account):
            # Another caller may have refreshed while we waited.
            current = await self._store.get_account_by_id(account.id) or account
            if current.status is AccountStatus.REAUTH_REQUIRED:
                raise RefreshFailedError(
                    f"{current.provider.value} account must be re-linked", account_id=current.id
                )
            if current.access_token != account.access_token:
                return current
            if not force and not self.needs_refresh(current):
                return current
            return await self._refresh(current)

    async def _refresh(self, account: LinkedAccount) -> LinkedAccount:
        old_key = account_fingerprint(account)
        connector = self._connectors.get(account.provider)

        if not account.refresh_token:
            await self._fail(account, old_key, "Access token expired and no refresh token is available")
            raise RefreshFailedError(
                f"{connector.display_name} token expired and cannot be refreshed; re-link required",
                account_id=account.id,
            )

        try:
            tokens = await connector.refresh_access_token(account.refresh_token)
        except RefreshFailedError as exc:
            await self._fail(account, old_key, exc.message)
            exc.account_id = account.id
            raise

        now = as_datetime(self._clock())
        refreshed = account.model_copy(
            update={
                "access_token": tokens.access_token,
                # Some providers rotate refresh tokens
                "refresh_token": tokens.refresh_token or account.refresh_token,
                "expires_at": tokens.expires_at(now),
                "scopes": tokens.scopes or account.scopes,
                "refreshed_at": now,
                "status": AccountStatus.ACTIVE,
                "error_message": None,
            }
        )
        stored = await self._store.upsert_account(refreshed)
        if account_fingerprint(stored) != old_key:
            await self._pool.retire(old_key)
        else:
            await self._pool.invalidate(old_key)
        logger.info("Refreshed %s token for account %s", account.provider.value, account.id)
        return stored

    async def _fail(self, account: LinkedAccount, old_key: str, reason: str) -> None:
        marked = account.model_copy(
            update={"status": AccountStatus.REAUTH_REQUIRED, "error_message": reason}
        )
        await self._store.upsert_account(marked)
        await self._pool.retire(old_key)
        logger.warning(
            "Token refresh failed for %s account %s; re-link required",
            account.provider.value,
            account.id,
        )
