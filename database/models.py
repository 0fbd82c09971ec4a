"""
SQLAlchemy ORM models for persisted linked accounts.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class LinkedAccountRow(Base):
    __tablename__ = "linked_accounts"
    __table_args__ = (
        UniqueConstraint("owner_id", "provider", "provider_user_id", name="uq_linked_account_identity"),
        Index("ix_linked_accounts_owner_provider", "owner_id", "provider"),
    )

    account_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(128), nullable=False)
    provider = Column(String(32), nullable=False)
    # "" when the profile fetch failed at link time
    provider_user_id = Column(String(128), nullable=False, default="")
    username = Column(String(255))
    access_token = Column(Text, nullable=False)       # Fernet ciphertext
    refresh_token = Column(Text)                       # Fernet ciphertext
    expires_at = Column(DateTime(timezone=True))
    scopes = Column(JSON, default=list)
    status = Column(String(32), nullable=False, default="active")
    error_message = Column(Text)
    provider_meta = Column(JSON, default=dict)
    linked_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    refreshed_at = Column(DateTime(timezone=True))
