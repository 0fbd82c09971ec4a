"""
Connector API routes — OAuth connect/callback, list connections, disconnect.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response

from api.dependencies import get_broker, get_current_owner_id
from api.rendering import render_json, render_popup, render_redirect
from broker.exchange import CallbackParams
from broker.service import AccountBroker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


@router.get("/providers")
async def list_providers(broker: AccountBroker = Depends(get_broker)) -> List[Dict[str, Any]]:
    """
    List all providers and their configuration status.
    No auth required — used by frontend to show available connectors.
    """
    return broker.connectors.list_providers()


@router.get("/connections")
async def list_connections(
    owner_id: str = Depends(get_current_owner_id),
    broker: AccountBroker = Depends(get_broker),
) -> List[Dict[str, Any]]:
    """List all linked accounts for the authenticated owner (no tokens)."""
    return [a.public_view() for a in await broker.list_accounts(owner_id)]


@router.get("/{provider}/auth-url")
async def get_auth_url(
    provider: str,
    owner_id: str = Depends(get_current_owner_id),
    broker: AccountBroker = Depends(get_broker),
) -> Dict[str, str]:
    """
    Start a login and return the provider authorization URL.

    Frontend should open this URL in a popup window or redirect to it.
    The code verifier stays on the server.
    """
    link = broker.start_login(provider, owner_id)
    return {"auth_url": link.url, "state": link.state, "provider": link.provider.value}


@router.get("/{provider}/callback")
async def oauth_callback(
    request: Request,
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    format: str = Query("redirect", pattern="^(redirect|json|popup)$"),
    broker: AccountBroker = Depends(get_broker),
) -> Response:
    """
    OAuth callback — the provider redirects here after consent.

    Runs the exchange state machine, then renders the outcome as JSON
    (``format=json``), the popup page (``format=popup``) or a redirect
    to the frontend.
    """
    attempt = await broker.handle_callback(
        provider,
        CallbackParams(code=code, state=state, error=error, error_description=error_description),
    )
    if format == "json":
        return render_json(attempt)
    if format == "popup":
        return render_popup(attempt)
    return render_redirect(attempt, request.app.state.settings.frontend_url)


@router.delete("/connections/{account_id}")
async def delete_connection(
    account_id: str,
    owner_id: str = Depends(get_current_owner_id),
    broker: AccountBroker = Depends(get_broker),
) -> Dict[str, Any]:
    """Revoke and remove a linked account."""
    deleted = await broker.disconnect(owner_id, account_id)
    if not deleted:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Connection not found")
    return {"status": "disconnected", "account_id": account_id}
