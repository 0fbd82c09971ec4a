"""
Telegram Bot API client.

Telegram bots authenticate with a static bot token embedded in the URL
path, so there is no OAuth flow; the broker only pools these handles,
keyed by the bot token's fingerprint.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from connectors.client import PlatformClient

_TELEGRAM_API = "https://api.telegram.org"


class TelegramAPIError(Exception):
    def __init__(self, description: str, error_code: Optional[int] = None):
        super().__init__(description)
        self.error_code = error_code


class TelegramBotClient(PlatformClient):
    """Bot API handle; unwraps Telegram's ``{"ok": ..., "result": ...}`` envelope."""

    def __init__(
        self,
        bot_token: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            "telegram",
            f"{_TELEGRAM_API}/bot{bot_token}/",
            timeout=timeout,
            transport=transport,
        )

    async def call_method(self, method: str, **params: Any) -> Any:
        resp = await self._http.post(method, json=params or None)
        payload: Dict[str, Any] = resp.json()
        if not payload.get("ok"):
            raise TelegramAPIError(
                payload.get("description", "Telegram API error"),
                payload.get("error_code"),
            )
        return payload.get("result")

    async def get_me(self) -> Dict[str, Any]:
        return await self.call_method("getMe")

    async def send_message(self, chat_id: int | str, text: str) -> Dict[str, Any]:
        return await self.call_method("sendMessage", chat_id=chat_id, text=text)


async def build_bot_client(
    bot_token: str,
    *,
    timeout: float = 15.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TelegramBotClient:
    """Create a bot handle and verify the token with ``getMe``."""
    client = TelegramBotClient(bot_token, timeout=timeout, transport=transport)
    try:
        await client.get_me()
    except Exception:
        await client.aclose()
        raise
    return client
