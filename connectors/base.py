"""
BaseConnector — shared OAuth2 Authorization Code + PKCE machinery.

Every provider (Twitter, Reddit, Discord) subclasses this, supplies its
:class:`~connectors.providers.Provider` member and implements
``_parse_identity``.  Endpoints and scopes come from ``PROVIDER_CONFIGS``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import httpx

from broker.errors import RefreshFailedError, TokenExchangeError
from broker.models import ProviderIdentity, TokenSet
from connectors.client import PlatformClient
from connectors.providers import PROVIDER_CONFIGS, Provider, ProviderConfig

logger = logging.getLogger(__name__)


class TokenEndpointError(Exception):
    """Raw token endpoint failure before it is mapped to a broker error."""

    def __init__(self, error: str, description: str = "", status: Optional[int] = None):
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description
        self.status = status

    @property
    def is_rejection(self) -> bool:
        """True when the provider answered and refused (4xx / OAuth error body)."""
        return self.status is not None and 400 <= self.status < 500


class BaseConnector(ABC):
    """Abstract base for all OAuth2 PKCE connectors."""

    provider: Provider

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        redirect_uri: str = "",
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────

    @property
    def config(self) -> ProviderConfig:
        return PROVIDER_CONFIGS[self.provider]

    @property
    def provider_name(self) -> str:
        return self.provider.value

    @property
    def display_name(self) -> str:
        return self.config.display_name

    @property
    def scopes(self) -> List[str]:
        return list(self.config.scopes)

    # ── Configuration ───────────────────────────────────────────────────

    def missing_settings(self) -> List[str]:
        """Names of settings that must be set before a login can start."""
        missing = []
        if not self.client_id:
            missing.append(f"{self.provider_name}_client_id")
        if not self.client_secret:
            missing.append(f"{self.provider_name}_client_secret")
        if not self.redirect_uri:
            missing.append(f"{self.provider_name}_redirect_uri")
        return missing

    def is_configured(self) -> bool:
        return not self.missing_settings()

    def extra_headers(self) -> Dict[str, str]:
        """Headers sent on every provider request (e.g. Reddit's User-Agent)."""
        return {}

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(
        self,
        state: str,
        code_challenge: str,
        *,
        redirect_uri: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> str:
        """Build the provider authorization URL for one pending session."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes if scopes is not None else self.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        params.update(self.config.auth_params)
        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenSet:
        """
        Exchange an authorization code (+ PKCE verifier) for tokens.

        Raises
        ------
        TokenExchangeError – network failure or provider refusal
        """
        try:
            payload = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "code_verifier": code_verifier,
                    "redirect_uri": redirect_uri,
                }
            )
        except TokenEndpointError as exc:
            raise TokenExchangeError(
                f"{self.display_name} token exchange failed: {exc}",
                provider_error=exc.error,
            ) from None
        return self._token_set(payload)

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new token set.

        Raises
        ------
        RefreshFailedError  – the provider rejected the refresh token
        TokenExchangeError  – transient failure (network, 5xx); retryable
        """
        try:
            payload = await self._token_request(
                {"grant_type": "refresh_token", "refresh_token": refresh_token}
            )
        except TokenEndpointError as exc:
            if exc.is_rejection:
                raise RefreshFailedError(
                    f"{self.display_name} rejected the refresh token ({exc.error})"
                ) from None
            raise TokenExchangeError(
                f"{self.display_name} token refresh failed: {exc}",
                provider_error=exc.error,
            ) from None
        return self._token_set(payload)

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        """Fetch the minimal profile (user id + name) for a fresh token."""
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        headers.update(self.extra_headers())
        async with self._http() as client:
            resp = await client.get(self.config.profile_url, headers=headers)
            resp.raise_for_status()
            return self._parse_identity(resp.json())

    async def revoke_token(self, token: str) -> bool:
        """
        Revoke the token at the provider.
        Returns True on success, False if the provider has no revocation endpoint.
        """
        if not self.config.revoke_url:
            return False
        data = {"token": token}
        auth = None
        if self.config.basic_auth:
            auth = (self.client_id, self.client_secret)
        else:
            data.update(client_id=self.client_id, client_secret=self.client_secret)
        async with self._http() as client:
            resp = await client.post(
                self.config.revoke_url, data=data, auth=auth, headers=self.extra_headers()
            )
        return resp.status_code in (200, 204)

    def build_client(self, access_token: str) -> PlatformClient:
        """Create a live API handle for *access_token* (called by the pool)."""
        return PlatformClient(
            self.provider_name,
            self.config.api_base_url,
            access_token,
            headers=self.extra_headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    # ── Helpers ─────────────────────────────────────────────────────────

    @abstractmethod
    def _parse_identity(self, payload: Dict[str, Any]) -> ProviderIdentity:
        ...

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        body = dict(data)
        auth = None
        if self.config.basic_auth:
            auth = (self.client_id, self.client_secret)
            # Twitter public clients also expect client_id in the body
            body["client_id"] = self.client_id
        else:
            body["client_id"] = self.client_id
            body["client_secret"] = self.client_secret

        headers = {"Accept": "application/json"}
        headers.update(self.extra_headers())
        try:
            async with self._http() as client:
                resp = await client.post(self.config.token_url, data=body, auth=auth, headers=headers)
        except httpx.HTTPError as exc:
            raise TokenEndpointError("network_error", type(exc).__name__) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if resp.is_error or "error" in payload:
            raise TokenEndpointError(
                str(payload.get("error") or f"http_{resp.status_code}"),
                str(payload.get("error_description") or payload.get("message") or ""),
                status=resp.status_code if resp.is_error else 400,
            )
        if "access_token" not in payload:
            raise TokenEndpointError("invalid_response", "response missing access_token", status=502)
        return payload

    def _token_set(self, payload: Dict[str, Any]) -> TokenSet:
        scope = payload.get("scope") or ""
        if isinstance(scope, str):
            scopes = scope.replace(",", " ").split()
        else:
            scopes = list(scope)
        expires_in = payload.get("expires_in", self.config.default_expires_in)
        return TokenSet(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scopes=scopes,
            token_type=payload.get("token_type", "Bearer"),
        )
