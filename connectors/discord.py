"""
DiscordConnector — OAuth2 (with PKCE) for Discord user accounts.

Discord takes client credentials in the form body rather than Basic auth.
"""

from __future__ import annotations

from typing import Any, Dict

from broker.models import ProviderIdentity
from connectors.base import BaseConnector
from connectors.providers import Provider


class DiscordConnector(BaseConnector):
    """OAuth2 connector for Discord."""

    provider = Provider.DISCORD

    def _parse_identity(self, payload: Dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider_user_id=str(payload["id"]),
            username=payload.get("global_name") or payload.get("username"),
            meta={
                "username": payload.get("username"),
                "avatar": payload.get("avatar"),
            },
        )
