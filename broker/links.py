"""
Authorization-link builder — turns a new pending session into the
provider consent URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from broker.errors import ConfigurationError
from broker.sessions import PendingSessionRegistry
from connectors.providers import Provider
from connectors.registry import ConnectorRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationLink:
    url: str
    state: str
    code_verifier: str
    provider: Provider

    def __repr__(self) -> str:
        return f"AuthorizationLink(provider={self.provider.value}, state={self.state[:8]}…)"


class AuthorizationLinkBuilder:
    def __init__(self, connectors: ConnectorRegistry, registry: PendingSessionRegistry):
        self._connectors = connectors
        self._registry = registry

    def build_url(
        self,
        provider: "Provider | str",
        owner_id: str,
        redirect_uri: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> AuthorizationLink:
        """
        Register a pending session and return the consent URL for it.

        Configuration is checked before the session is created, so a
        misconfigured provider never leaves an orphan entry behind.

        Raises
        ------
        ConfigurationError   – credentials or redirect URI missing
        UnknownProviderError – provider is not supported
        """
        connector = self._connectors.require_configured(provider)
        redirect = redirect_uri or connector.redirect_uri
        if not redirect:
            raise ConfigurationError(f"{connector.display_name} redirect URI is not configured")
        scope_list = list(scopes) if scopes is not None else connector.scopes

        session = self._registry.create(connector.provider, owner_id, redirect, scope_list)
        url = connector.get_auth_url(
            session.state,
            session.code_challenge,
            redirect_uri=redirect,
            scopes=scope_list,
        )
        logger.info("Authorization link issued: provider=%s owner=%s", connector.provider_name, owner_id)
        return AuthorizationLink(
            url=url,
            state=session.state,
            code_verifier=session.code_verifier,
            provider=connector.provider,
        )
