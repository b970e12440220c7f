"""Buddy edges, buddy requests and blocks."""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from messenger.models.user import Base


class Buddy(Base):
    """One direction of a buddy edge; accepted requests always write both."""

    __tablename__ = "buddies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    buddy_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    nickname: Mapped[str | None] = mapped_column(String(100), nullable=True)
    group_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default="General", server_default="General"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "buddy_user_id", name="uq_buddies_pair"),
        CheckConstraint("user_id != buddy_user_id", name="ck_buddies_not_self"),
        Index("ix_buddies_buddy_user_id", "buddy_user_id"),
    )


class BuddyRequest(Base):
    __tablename__ = "buddy_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    to_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("from_user_id", "to_user_id", name="uq_buddy_requests_pair"),
        CheckConstraint("from_user_id != to_user_id", name="ck_buddy_requests_not_self"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired')",
            name="ck_buddy_requests_status",
        ),
        Index("ix_buddy_requests_to_status", "to_user_id", "status"),
    )


class Block(Base):
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    blocker_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    blocked_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="uq_blocks_pair"),
        CheckConstraint("blocker_id != blocked_id", name="ck_blocks_not_self"),
    )
