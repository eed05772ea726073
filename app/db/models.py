from typing import List, Optional
from datetime import datetime
import uuid
from sqlalchemy import (
    String,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    func,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum


class Base(DeclarativeBase):
    pass


def _uuid_str() -> str:
    return str(uuid.uuid4())


# Enums
class IntervalMode(enum.Enum):
    FIXED = "fixed"
    RANDOM = "random"


class MembershipRole(enum.Enum):
    OWNER = "owner"
    MEMBER = "member"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    # IANA zone name used to evaluate quiet hours; NULL behaves as UTC
    timezone: Mapped[Optional[str]] = mapped_column(String(64), default="UTC")

    # Relationships
    memberships: Mapped[List["GroupMembership"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    push_subscriptions: Mapped[List["PushSubscription"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, timezone={self.timezone})>"


class Group(Base, AuditMixin):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL")
    )
    # Pings per 7-day period
    frequency: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    interval_mode: Mapped[IntervalMode] = mapped_column(
        Enum(IntervalMode), default=IntervalMode.RANDOM, nullable=False
    )
    quiet_hours_start: Mapped[Optional[int]] = mapped_column(Integer)
    quiet_hours_end: Mapped[Optional[int]] = mapped_column(Integer)
    # Only written by the ping dispatcher; NULL next_ping_time means never scheduled
    last_ping_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_ping_time: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    memberships: Mapped[List["GroupMembership"]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("frequency >= 1", name="ck_group_frequency_positive"),
        CheckConstraint(
            "quiet_hours_start IS NULL OR (quiet_hours_start >= 0 AND quiet_hours_start <= 23)",
            name="ck_group_quiet_hours_start_range",
        ),
        CheckConstraint(
            "quiet_hours_end IS NULL OR (quiet_hours_end >= 0 AND quiet_hours_end <= 23)",
            name="ck_group_quiet_hours_end_range",
        ),
        Index("IX_groups_next_ping_time", "next_ping_time"),
    )

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name}, next_ping_time={self.next_ping_time})>"


class GroupMembership(Base, AuditMixin):
    __tablename__ = "group_memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[MembershipRole] = mapped_column(
        Enum(MembershipRole), default=MembershipRole.MEMBER, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="memberships")
    group: Mapped["Group"] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_membership_user_group"),
        Index("IX_group_memberships_group_id", "group_id"),
    )


class PushSubscription(Base, AuditMixin):
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # Auth sessions live outside this service; the id is only used for logout cleanup
    session_id: Mapped[Optional[str]] = mapped_column(String(255))
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    auth: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="push_subscriptions")

    __table_args__ = (
        UniqueConstraint("endpoint", name="uq_push_subscription_endpoint"),
        Index("IX_push_subscriptions_user_id", "user_id"),
        Index("IX_push_subscriptions_session_id", "session_id"),
    )

    def subscription_info(self) -> dict:
        """Shape expected by pywebpush."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }

    def __repr__(self) -> str:
        return f"<PushSubscription(id={self.id}, user_id={self.user_id}, endpoint={self.endpoint[:40]})>"
