"""Revoked access tokens."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from messenger.models.user import Base


class RevokedToken(Base):
    __tablename__ = "token_blacklist"

    # SHA-256 hex digest of the raw token, see auth_service.token_revocation_key.
    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_token_blacklist_expires_at", "expires_at"),
    )
