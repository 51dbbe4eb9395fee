"""Retention policy and retention flag models.

A flag marks one record that outlived its policy. The partial unique
index on (data_type, record_id) WHERE action_taken = 'pending' is what
keeps repeated scans from creating duplicate pending flags, even when
two scans race.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from caretrack.models.base import Base, TimestampMixin
from caretrack.models.enums import FlagAction


class RetentionPolicy(TimestampMixin, Base):
    """Maximum age for one data type. Never deleted, only deactivated."""

    __tablename__ = "data_retention_policies"
    __table_args__ = (
        CheckConstraint("retention_days > 0", name="ck_retention_days_positive"),
    )

    data_type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<RetentionPolicy {self.data_type} days={self.retention_days} active={self.is_active}>"


class RetentionFlag(TimestampMixin, Base):
    """A record awaiting (or having received) a retention decision."""

    __tablename__ = "data_retention_flags"
    __table_args__ = (
        CheckConstraint("action_taken IN ('pending', 'deleted', 'retained')", name="ck_flag_action_taken"),
        CheckConstraint("(action_taken = 'pending') = (reviewed_at IS NULL)", name="ck_flag_reviewed_at"),
        Index(
            "uq_retention_flags_pending",
            "data_type",
            "record_id",
            unique=True,
            postgresql_where=text("action_taken = 'pending'"),
        ),
    )

    data_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    record_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)

    flagged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    action_taken: Mapped[str] = mapped_column(
        String(20), default=FlagAction.PENDING.value, nullable=False, index=True
    )

    # Set together, exactly when action_taken leaves pending
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(String(1000))

    def __repr__(self) -> str:
        return f"<RetentionFlag {self.data_type}:{self.record_id} action={self.action_taken}>"
