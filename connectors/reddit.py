"""
RedditConnector — OAuth2 web-app flow for Reddit.

Reddit requires a descriptive ``User-Agent`` on every request and issues
refresh tokens only for ``duration=permanent`` grants.
"""

from __future__ import annotations

from typing import Any, Dict

import httpx

from broker.models import ProviderIdentity
from connectors.base import BaseConnector
from connectors.providers import Provider


class RedditConnector(BaseConnector):
    """OAuth2 connector for Reddit."""

    provider = Provider.REDDIT

    def __init__(self, *args: Any, user_agent: str = "socialbridge/1.0", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.user_agent = user_agent

    def extra_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent}

    def _parse_identity(self, payload: Dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider_user_id=str(payload["id"]),
            username=payload.get("name"),
            meta={"icon_img": payload.get("icon_img")},
        )

    async def revoke_token(self, token: str) -> bool:
        """Reddit wants a ``token_type_hint`` alongside the token."""
        async with self._http() as client:
            resp = await client.post(
                self.config.revoke_url,
                data={"token": token, "token_type_hint": "access_token"},
                auth=httpx.BasicAuth(self.client_id, self.client_secret),
                headers=self.extra_headers(),
            )
        return resp.status_code in (200, 204)
