"""
SQLAlchemy ORM models for the OAuth state and connection tables.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class OAuthState(Base):
    __tablename__ = "authorization_state"

    state = Column(String(128), primary_key=True)
    user_id = Column(String(255), nullable=False)
    provider = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_authorization_state_expires_at", "expires_at"),)


class MailchimpConnection(Base):
    __tablename__ = "connection"

    user_id = Column(String(255), primary_key=True)
    access_token_ciphertext = Column(Text, nullable=False)
    server_prefix = Column(String(16), nullable=False)
    account_id = Column(String(64))
    email = Column(String(255))
    username = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    last_validated_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
