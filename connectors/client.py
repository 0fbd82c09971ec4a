"""
PlatformClient — a live, authenticated HTTP handle to one platform API.

Instances are what the client pool caches: one per credential, holding an
open ``httpx.AsyncClient`` (connection pool + keep-alive sockets) until the
pool evicts it and calls :meth:`aclose`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class PlatformClient:
    """Bearer-authenticated JSON client bound to a provider API base URL."""

    def __init__(
        self,
        provider: str,
        base_url: str,
        access_token: Optional[str] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        merged = {"Accept": "application/json"}
        if access_token:
            merged["Authorization"] = f"Bearer {access_token}"
        if headers:
            merged.update(headers)
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers=merged,
            timeout=timeout,
            transport=transport,
        )

    @property
    def closed(self) -> bool:
        return self._http.is_closed

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises ``httpx.HTTPStatusError`` on 4xx/5xx so callers (and
        ``AccountBroker.call``) can react to a 401.
        """
        resp = await self._http.request(method, path, **kwargs)
        resp.raise_for_status()
        if not resp.content:
            return None
        return resp.json()

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def aclose(self) -> None:
        if not self._http.is_closed:
            await self._http.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider!r}, closed={self.closed})"
