"""
ConnectorRegistry — one connector per :class:`Provider`, built from settings.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

import httpx

from broker.errors import ConfigurationError
from config.settings import Settings
from connectors.base import BaseConnector
from connectors.discord import DiscordConnector
from connectors.providers import Provider, check_exhaustive
from connectors.reddit import RedditConnector
from connectors.twitter import TwitterConnector

logger = logging.getLogger(__name__)

# ── All known connectors — every Provider member must appear here ───────

CONNECTOR_CLASSES: Dict[Provider, Type[BaseConnector]] = {
    Provider.TWITTER: TwitterConnector,
    Provider.REDDIT: RedditConnector,
    Provider.DISCORD: DiscordConnector,
}

check_exhaustive(CONNECTOR_CLASSES, "CONNECTOR_CLASSES")


class ConnectorRegistry:
    """Maps each provider to its configured connector instance."""

    def __init__(self, connectors: Dict[Provider, BaseConnector]):
        check_exhaustive(connectors, "ConnectorRegistry")
        self._connectors = dict(connectors)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConnectorRegistry":
        connectors: Dict[Provider, BaseConnector] = {}
        for provider, connector_cls in CONNECTOR_CLASSES.items():
            kwargs = dict(
                settings.provider_credentials(provider.value),
                timeout=settings.provider_http_timeout,
                transport=transport,
            )
            if provider is Provider.REDDIT:
                kwargs["user_agent"] = settings.reddit_user_agent
            conn = connector_cls(**kwargs)
            connectors[provider] = conn
            if conn.is_configured():
                logger.info("Connector registered: %s (%s)", conn.display_name, conn.provider_name)
            else:
                logger.warning(
                    "Connector %s not configured — missing %s",
                    conn.provider_name,
                    ", ".join(conn.missing_settings()),
                )
        return cls(connectors)

    def get(self, provider: "Provider | str") -> BaseConnector:
        """Return the connector for *provider* (configured or not)."""
        return self._connectors[Provider.parse(provider)]

    def require_configured(self, provider: "Provider | str") -> BaseConnector:
        """
        Return the connector, raising ``ConfigurationError`` if it cannot
        start a login.
        """
        conn = self.get(provider)
        missing = conn.missing_settings()
        if missing:
            raise ConfigurationError(
                f"{conn.display_name} is not configured (missing {', '.join(missing)})"
            )
        return conn

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all providers."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "scopes": c.scopes,
                "configured": c.is_configured(),
            }
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[str]:
        return [p.value for p, c in self._connectors.items() if c.is_configured()]
