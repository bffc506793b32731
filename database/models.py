"""
SQLAlchemy ORM models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class UserConnection(Base):
    """One row per (local user, provider account)."""

    __tablename__ = "user_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "provider_id", "provider_user_id", name="uq_user_connection_key"),
        Index("ix_user_connections_rank", "user_id", "provider_id", "rank"),
        Index("ix_user_connections_provider_account", "provider_id", "provider_user_id"),
    )

    connection_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False)
    provider_id = Column(String(64), nullable=False)
    provider_user_id = Column(String(255), nullable=False)
    rank = Column(Integer, nullable=False)
    display_name = Column(String(255))
    profile_url = Column(String(512))
    image_url = Column(String(512))
    access_token = Column(Text, nullable=False)
    secret = Column(Text)
    refresh_token = Column(Text)
    expire_time = Column(DateTime(timezone=True))
    connected_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True))
