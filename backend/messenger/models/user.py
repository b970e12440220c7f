"""User model and SQLAlchemy declarative base."""

from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Integer, Text, CheckConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

USER_STATUSES = ("online", "away", "busy", "offline")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Bumped by logout-all; tokens minted for an older generation are rejected.
    token_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="offline", server_default="offline"
    )
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('online', 'away', 'busy', 'offline')",
            name="ck_users_status",
        ),
    )
