"""
Callback exchanger — the per-login state machine.

    STARTED ──► EXCHANGING ──► LINKED
       │             │
       └─────────────┴──────► FAILED

The exchanger never renders responses; the route layer turns a
:class:`LoginAttempt` into JSON or a redirect.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from broker.errors import (
    BrokerError,
    InvalidOrExpiredStateError,
    MalformedCallbackError,
    ProviderDeniedError,
    UnknownProviderError,
)
from broker.models import AccountStatus, LinkedAccount, ProviderIdentity, as_datetime
from broker.sessions import PendingSessionRegistry
from broker.store import AccountStore
from connectors.providers import Provider
from connectors.registry import ConnectorRegistry

logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    STARTED = "started"
    EXCHANGING = "exchanging"
    LINKED = "linked"
    FAILED = "failed"


_TRANSITIONS = {
    LoginState.STARTED: {LoginState.EXCHANGING, LoginState.FAILED},
    LoginState.EXCHANGING: {LoginState.LINKED, LoginState.FAILED},
    LoginState.LINKED: set(),
    LoginState.FAILED: set(),
}


@dataclass
class CallbackParams:
    """Query parameters delivered to the redirect URI."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


@dataclass
class LoginAttempt:
    provider: Optional[Provider]
    state: LoginState = LoginState.STARTED
    history: List[LoginState] = field(default_factory=lambda: [LoginState.STARTED])
    account: Optional[LinkedAccount] = None
    error: Optional[BrokerError] = None
    identity_missing: bool = False

    def advance(self, new_state: LoginState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal login transition {self.state.value} → {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: BrokerError) -> "LoginAttempt":
        self.error = error
        self.advance(LoginState.FAILED)
        return self

    @property
    def succeeded(self) -> bool:
        return self.state is LoginState.LINKED


class CallbackExchanger:
    def __init__(
        self,
        connectors: ConnectorRegistry,
        registry: PendingSessionRegistry,
        store: AccountStore,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._connectors = connectors
        self._registry = registry
        self._store = store
        self._clock = clock

    async def run(self, params: CallbackParams, provider: "Provider | str | None" = None) -> LoginAttempt:
        """
        Drive one callback through the state machine.  Never raises a
        ``BrokerError``; the outcome is on the returned attempt.
        """
        try:
            expected = Provider.parse(provider) if provider is not None else None
        except UnknownProviderError as exc:
            return LoginAttempt(provider=None).fail(exc)
        attempt = LoginAttempt(provider=expected)

        if params.error:
            detail = params.error_description or params.error
            logger.info("Provider denied login (%s): %s", expected.value if expected else "?", params.error)
            return attempt.fail(ProviderDeniedError(f"Authorization was denied: {detail}"))

        if not params.code or not params.state:
            missing = "code" if not params.code else "state"
            return attempt.fail(MalformedCallbackError(f"Callback is missing the '{missing}' parameter"))

        try:
            session = self._registry.take(params.state)
        except InvalidOrExpiredStateError as exc:
            logger.warning("Rejected OAuth callback with unknown or expired state")
            return attempt.fail(exc)

        if expected is not None and session.provider is not expected:
            logger.warning(
                "Rejected OAuth callback: state issued for %s, delivered to %s",
                session.provider.value,
                expected.value,
            )
            return attempt.fail(InvalidOrExpiredStateError("OAuth state does not match this provider"))

        attempt.provider = session.provider
        attempt.advance(LoginState.EXCHANGING)
        connector = self._connectors.get(session.provider)

        try:
            tokens = await connector.exchange_code(params.code, session.code_verifier, session.redirect_uri)
        except BrokerError as exc:
            logger.warning("Token exchange failed for %s: %s", session.provider.value, exc.message)
            return attempt.fail(exc)

        identity: Optional[ProviderIdentity] = None
        try:
            identity = await connector.fetch_identity(tokens.access_token)
        except Exception as exc:
            # Tokens are already issued; keep them and link without identity.
            attempt.identity_missing = True
            logger.warning(
                "Profile fetch failed for %s (%s); linking without identity",
                session.provider.value,
                type(exc).__name__,
            )

        now = as_datetime(self._clock())
        account = LinkedAccount(
            owner_id=session.owner_id,
            provider=session.provider,
            provider_user_id=identity.provider_user_id if identity else None,
            username=identity.username if identity else None,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at(now),
            scopes=tokens.scopes or list(session.scopes),
            status=AccountStatus.ACTIVE,
            provider_meta=identity.meta if identity else {},
            linked_at=now,
        )
        attempt.account = await self._store.upsert_account(account)
        attempt.advance(LoginState.LINKED)
        logger.info(
            "Account linked: owner=%s provider=%s account=%s",
            session.owner_id,
            session.provider.value,
            attempt.account.id,
        )
        return attempt

    async def complete(self, params: CallbackParams, provider: "Provider | str | None" = None) -> LinkedAccount:
        """Like :meth:`run` but raises the attempt's error on failure."""
        attempt = await self.run(params, provider)
        if attempt.error is not None:
            raise attempt.error
        assert attempt.account is not None
        return attempt.account
