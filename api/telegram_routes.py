"""
Telegram bot routes — connection check and message dispatch through the
configured bot token.  The bot handle comes from the broker's client pool.

Route prefix: /api/v1/telegram
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from api.dependencies import get_broker, get_current_owner_id
from broker.service import AccountBroker
from connectors.telegram import TelegramAPIError, TelegramBotClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["telegram"])


class SendMessageRequest(BaseModel):
    chat_id: int
    message: str = Field(min_length=1)


class BroadcastRequest(BaseModel):
    chat_ids: List[int] = Field(min_length=1)
    message: str = Field(min_length=1)


async def _bot(request: Request, broker: AccountBroker) -> TelegramBotClient:
    token = request.app.state.settings.telegram_bot_token
    if not token:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Telegram bot token not configured")
    return await broker.get_bot_client(token)


@router.get("/test-connection")
async def check_connection(
    request: Request,
    broker: AccountBroker = Depends(get_broker),
) -> Dict[str, Any]:
    """Verify the configured bot token. No auth required."""
    bot = await _bot(request, broker)
    try:
        info = await bot.get_me()
    except TelegramAPIError as exc:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, f"Telegram error: {exc}") from None
    return {
        "success": True,
        "bot_info": {
            "id": info.get("id"),
            "username": info.get("username"),
            "first_name": info.get("first_name"),
            "can_join_groups": info.get("can_join_groups"),
            "can_read_all_group_messages": info.get("can_read_all_group_messages"),
            "supports_inline_queries": info.get("supports_inline_queries"),
        },
    }


@router.post("/messages")
async def send_message(
    body: SendMessageRequest,
    request: Request,
    owner_id: str = Depends(get_current_owner_id),
    broker: AccountBroker = Depends(get_broker),
) -> Dict[str, Any]:
    bot = await _bot(request, broker)
    try:
        sent = await bot.send_message(body.chat_id, body.message)
    except TelegramAPIError as exc:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, f"Telegram error: {exc}") from None
    logger.info("Telegram message sent to chat %s by owner %s", body.chat_id, owner_id)
    return {"success": True, "message_id": sent.get("message_id")}


@router.post("/broadcast")
async def broadcast(
    body: BroadcastRequest,
    request: Request,
    owner_id: str = Depends(get_current_owner_id),
    broker: AccountBroker = Depends(get_broker),
) -> Dict[str, Any]:
    """Send one message to several chats; per-chat failures are reported, not raised."""
    bot = await _bot(request, broker)
    results = []
    for chat_id in body.chat_ids:
        try:
            sent = await bot.send_message(chat_id, body.message)
            results.append({"chat_id": chat_id, "success": True, "message_id": sent.get("message_id")})
        except TelegramAPIError as exc:
            logger.warning("Telegram broadcast to chat %s failed: %s", chat_id, exc)
            results.append({"chat_id": chat_id, "success": False, "error": str(exc)})
    logger.info(
        "Telegram broadcast by owner %s: %d/%d delivered",
        owner_id,
        sum(r["success"] for r in results),
        len(results),
    )
    return {"success": True, "results": results}
