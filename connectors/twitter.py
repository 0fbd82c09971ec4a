"""
TwitterConnector — OAuth2 Authorization Code + PKCE for the X/Twitter v2 API.

Confidential clients authenticate to the token endpoint with HTTP Basic
auth.  ``offline.access`` is requested so a refresh token is issued.
"""

from __future__ import annotations

from typing import Any, Dict

from broker.models import ProviderIdentity
from connectors.base import BaseConnector
from connectors.providers import Provider


class TwitterConnector(BaseConnector):
    """OAuth2 connector for Twitter."""

    provider = Provider.TWITTER

    def _parse_identity(self, payload: Dict[str, Any]) -> ProviderIdentity:
        user = payload.get("data") or {}
        return ProviderIdentity(
            provider_user_id=str(user["id"]),
            username=user.get("username"),
            meta={"name": user.get("name")},
        )
