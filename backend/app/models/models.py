from datetime import datetime, timezone
from enum import Enum as StrEnumBase
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class MemberRoleEnum(str, StrEnumBase):
    ADMIN = "admin"
    MEMBER = "member"


class NotificationTypeEnum(str, StrEnumBase):
    DRAW_PERFORMED = "draw_performed"


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_draw_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Bumped on every draw/end so concurrent writers can detect each other.
    draw_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    members: Mapped[list["GroupMember"]] = relationship(back_populates="group", cascade="all, delete-orphan")
    exclusions: Mapped[list["DrawExclusion"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
    )
    assignments: Mapped[list["DrawAssignment"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
    )


class GroupMember(Base):
    __tablename__ = "group_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[str] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), default=MemberRoleEnum.MEMBER.value, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    group: Mapped[Group] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="ux_group_members_group_user"),
    )


# Byte-order comparison on Postgres so the CHECK agrees with normalize_pair's Python ordering.
_PairId = String(36).with_variant(String(36, collation="C"), "postgresql")


class DrawExclusion(Base):
    __tablename__ = "draw_exclusions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_id: Mapped[str] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_a_id: Mapped[str] = mapped_column(_PairId, nullable=False)
    user_b_id: Mapped[str] = mapped_column(_PairId, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    group: Mapped[Group] = relationship(back_populates="exclusions")

    __table_args__ = (
        UniqueConstraint("group_id", "user_a_id", "user_b_id", name="ux_draw_exclusions_pair"),
        CheckConstraint("user_a_id < user_b_id", name="ck_draw_exclusions_normalized"),
    )


class DrawAssignment(Base):
    __tablename__ = "draw_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_id: Mapped[str] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    giver_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    receiver_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_revealed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    group: Mapped[Group] = relationship(back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("group_id", "giver_id", name="ux_draw_assignments_giver"),
        UniqueConstraint("group_id", "receiver_id", name="ux_draw_assignments_receiver"),
        CheckConstraint("giver_id <> receiver_id", name="ck_draw_assignments_no_self"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    group_id: Mapped[str | None] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
