"""ORM tables for users, grievances and the grievance status history.

Status history rows are append-only.  Their integer primary key doubles
as the insertion-order tie breaker when two entries share a
``created_at`` value.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import JSON, Enum, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base
from src.models.enums import GrievanceCategory, GrievancePriority, GrievanceStatus, UserRole


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


def _enum_column(enum_cls: type) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda e: [x.value for x in e],
        validate_strings=True,
    )


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole), nullable=False, default=UserRole.USER)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class GrievanceRecord(Base):
    __tablename__ = "grievances"
    __table_args__ = (Index("ix_grievances_user_id_created_at", "user_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    tracking_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[GrievanceCategory] = mapped_column(_enum_column(GrievanceCategory), nullable=False)
    location: Mapped[str] = mapped_column(String(500), nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    priority: Mapped[GrievancePriority] = mapped_column(
        _enum_column(GrievancePriority), nullable=False, default=GrievancePriority.MEDIUM
    )
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class StatusEntryRecord(Base):
    __tablename__ = "grievance_status_history"
    __table_args__ = (Index("ix_status_history_grievance_created", "grievance_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    grievance_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("grievances.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[GrievanceStatus] = mapped_column(_enum_column(GrievanceStatus), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
