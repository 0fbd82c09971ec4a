"""
Data model for the broker: pending logins, token sets and linked accounts.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from connectors.providers import Provider


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PendingSession:
    """
    One in-flight login, keyed by ``state``.

    ``created_at`` is read from the registry clock (seconds).  The verifier
    never leaves the backend except in the token exchange request body.
    """

    state: str
    code_verifier: str
    code_challenge: str
    provider: Provider
    owner_id: str
    redirect_uri: str
    scopes: Tuple[str, ...]
    created_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl

    def __repr__(self) -> str:
        return (
            f"PendingSession(provider={self.provider.value}, owner_id={self.owner_id}, "
            f"state={self.state[:8]}…)"
        )


class TokenSet(BaseModel):
    """Normalised token endpoint response."""

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_in: Optional[int] = None
    scopes: List[str] = Field(default_factory=list)
    token_type: str = "Bearer"

    def expires_at(self, now: datetime) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=self.expires_in)


class ProviderIdentity(BaseModel):
    provider_user_id: str
    username: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class AccountStatus(str, Enum):
    ACTIVE = "active"
    REAUTH_REQUIRED = "reauth_required"


class LinkedAccount(BaseModel):
    """A platform identity linked to an owner, with its current tokens."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    provider: Provider
    provider_user_id: Optional[str] = None
    username: Optional[str] = None
    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    status: AccountStatus = AccountStatus.ACTIVE
    error_message: Optional[str] = None
    provider_meta: Dict[str, Any] = Field(default_factory=dict)
    linked_at: datetime = Field(default_factory=_utcnow)
    refreshed_at: Optional[datetime] = None

    @property
    def identity_key(self) -> Tuple[str, Provider, Optional[str]]:
        return (self.owner_id, self.provider, self.provider_user_id)

    def needs_refresh(self, now: datetime, skew: timedelta) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at - skew

    def public_view(self) -> Dict[str, Any]:
        """Account fields safe to return to clients (no tokens)."""
        return {
            "account_id": self.id,
            "provider": self.provider.value,
            "provider_user_id": self.provider_user_id,
            "username": self.username,
            "status": self.status.value,
            "scopes": list(self.scopes),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "linked_at": self.linked_at.isoformat(),
            "error_message": self.error_message,
        }


def as_datetime(timestamp: float) -> datetime:
    """Convert a clock reading (epoch seconds) to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, timezone.utc)
