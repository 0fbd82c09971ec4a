"""
AccountBroker — the object callers use to link accounts and reach platforms.

Owns the pending-session registry, client pool, refresher and exchanger
for one process.  Nothing here is a module-level singleton: build one
broker at startup (``build_broker``) and pass it where it is needed.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

import httpx

from broker.errors import AccountNotLinkedError
from broker.exchange import CallbackExchanger, CallbackParams, LoginAttempt
from broker.links import AuthorizationLink, AuthorizationLinkBuilder
from broker.models import LinkedAccount
from broker.pkce import PkceGenerator, TokenSource
from broker.pool import ClientPool, fingerprint
from broker.refresher import TokenRefresher, account_fingerprint
from broker.sessions import PendingSessionRegistry
from broker.store import AccountStore, InMemoryAccountStore
from config.settings import Settings
from connectors.client import PlatformClient
from connectors.providers import Provider
from connectors.registry import ConnectorRegistry
from connectors.telegram import TelegramBotClient, build_bot_client

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AccountBroker:
    def __init__(
        self,
        connectors: ConnectorRegistry,
        store: AccountStore,
        *,
        session_ttl: float = 600.0,
        refresh_skew: float = 120.0,
        max_idle: float = 900.0,
        http_timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
        token_source: TokenSource = secrets.token_urlsafe,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.connectors = connectors
        self.store = store
        self.max_idle = max_idle
        self._http_timeout = http_timeout
        self._transport = transport

        self.sessions = PendingSessionRegistry(
            session_ttl, clock=clock, generator=PkceGenerator(token_source)
        )
        self.pool = ClientPool(clock=clock)
        self.links = AuthorizationLinkBuilder(connectors, self.sessions)
        self.exchanger = CallbackExchanger(connectors, self.sessions, store, clock=clock)
        self.refresher = TokenRefresher(
            connectors, store, self.pool, skew_seconds=refresh_skew, clock=clock
        )
        self._maintenance: Optional["asyncio.Task[None]"] = None

    # ── Login flow ──────────────────────────────────────────────────────

    def start_login(self, provider: "Provider | str", owner_id: str) -> AuthorizationLink:
        return self.links.build_url(provider, owner_id)

    async def handle_callback(
        self,
        provider: "Provider | str | None",
        params: CallbackParams,
    ) -> LoginAttempt:
        """Run the callback state machine; the caller renders the attempt."""
        return await self.exchanger.run(params, provider)

    async def complete_login(
        self,
        provider: "Provider | str | None",
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> LinkedAccount:
        return await self.exchanger.complete(
            CallbackParams(code=code, state=state, error=error), provider
        )

    # ── Accounts ────────────────────────────────────────────────────────

    async def list_accounts(self, owner_id: str) -> List[LinkedAccount]:
        return await self.store.list_accounts(owner_id)

    async def get_account(self, owner_id: str, provider: "Provider | str") -> LinkedAccount:
        provider = Provider.parse(provider)
        account = await self.store.get_account(owner_id, provider)
        if account is None:
            raise AccountNotLinkedError(f"No {provider.value} account is linked")
        return account

    async def disconnect(self, owner_id: str, account_id: str) -> bool:
        """
        Revoke (best-effort) and delete a linked account.
        Returns False if the account does not exist or belongs to someone else.
        """
        account = await self.store.get_account_by_id(account_id)
        if account is None or account.owner_id != owner_id:
            return False

        connector = self.connectors.get(account.provider)
        try:
            await connector.revoke_token(account.access_token)
        except httpx.HTTPError as exc:
            logger.warning(
                "Token revocation failed for %s account %s (%s); deleting anyway",
                account.provider.value,
                account.id,
                type(exc).__name__,
            )

        await self.pool.retire(account_fingerprint(account))
        deleted = await self.store.delete_account(account_id)
        logger.info("Disconnected %s account %s for owner %s", account.provider.value, account_id, owner_id)
        return deleted

    # ── Clients ─────────────────────────────────────────────────────────

    async def get_client(self, owner_id: str, provider: "Provider | str") -> PlatformClient:
        """
        Return a pooled client for the owner's account, refreshing the
        token first when it is about to expire.
        """
        account = await self.get_account(owner_id, provider)
        _, client = await self._resolve(account)
        return client

    async def _resolve(
        self, account: LinkedAccount, *, force_refresh: bool = False
    ) -> Tuple[LinkedAccount, PlatformClient]:
        """Fresh account plus the pooled client for its current token."""
        account = await self.refresher.ensure_fresh(account, force=force_refresh)
        # The caller's snapshot may predate a rotation made by another caller.
        current = await self.store.get_account_by_id(account.id)
        if current is None:
            raise AccountNotLinkedError(f"{account.provider.value} account was disconnected")
        if current.access_token != account.access_token:
            account = await self.refresher.ensure_fresh(current)
        connector = self.connectors.get(account.provider)
        token = account.access_token
        client = await self.pool.acquire(
            account_fingerprint(account), lambda: connector.build_client(token)
        )
        return account, client

    async def get_bot_client(self, bot_token: str) -> TelegramBotClient:
        """Pooled Telegram bot handle keyed by the bot token's fingerprint."""
        return await self.pool.acquire(
            fingerprint(bot_token, "telegram"),
            lambda: build_bot_client(bot_token, timeout=self._http_timeout, transport=self._transport),
        )

    async def call(
        self,
        owner_id: str,
        provider: "Provider | str",
        fn: Callable[[PlatformClient], Awaitable[T]],
    ) -> T:
        """
        Run ``fn(client)``.  On HTTP 401 the handle is dropped, the token
        force-refreshed once and the call retried once.
        """
        account, client = await self._resolve(await self.get_account(owner_id, provider))
        try:
            return await fn(client)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code != 401:
                raise
            logger.info("Platform returned 401 for %s account %s; refreshing", account.provider.value, account.id)

        await self.pool.invalidate(account_fingerprint(account))
        current = await self.store.get_account_by_id(account.id)
        if current is None:
            raise AccountNotLinkedError(f"{account.provider.value} account was disconnected")
        # No refresh token left: the refresher marks the account for re-link.
        _, client = await self._resolve(current, force_refresh=current.access_token == account.access_token)
        return await fn(client)

    # ── Maintenance ─────────────────────────────────────────────────────

    async def sweep(self) -> dict:
        """One maintenance pass: drop expired logins and idle clients."""
        sessions = self.sessions.evict_expired()
        clients = await self.pool.evict_idle(self.max_idle)
        return {"expired_sessions": sessions, "idle_clients": clients}

    async def run_maintenance(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Broker maintenance sweep failed")

    def start_maintenance(self, interval: float) -> None:
        if self._maintenance is None or self._maintenance.done():
            self._maintenance = asyncio.ensure_future(self.run_maintenance(interval))

    async def aclose(self) -> None:
        if self._maintenance is not None:
            self._maintenance.cancel()
            try:
                await self._maintenance
            except asyncio.CancelledError:
                pass
            self._maintenance = None
        await self.pool.close()


def build_broker(
    settings: Settings,
    store: Optional[AccountStore] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
) -> AccountBroker:
    """Wire a broker from settings (in-memory store unless one is given)."""
    return AccountBroker(
        ConnectorRegistry.from_settings(settings, transport=transport),
        store if store is not None else InMemoryAccountStore(),
        session_ttl=settings.oauth_session_ttl_seconds,
        refresh_skew=settings.token_refresh_skew_seconds,
        max_idle=settings.client_pool_max_idle_seconds,
        http_timeout=settings.provider_http_timeout,
        clock=clock,
        transport=transport,
    )
