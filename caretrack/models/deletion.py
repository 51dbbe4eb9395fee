"""DeletionRequest model — user-initiated erasure workflow.

At most one pending request per user, enforced by a partial unique index.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from caretrack.models.base import Base, TimestampMixin
from caretrack.models.enums import DeletionRequestStatus


class DeletionRequest(TimestampMixin, Base):
    """A request to erase a user's health data or whole account."""

    __tablename__ = "deletion_requests"
    __table_args__ = (
        CheckConstraint("request_type IN ('account', 'data')", name="ck_deletion_request_type"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')",
            name="ck_deletion_request_status",
        ),
        Index(
            "uq_deletion_requests_pending_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1000))

    status: Mapped[str] = mapped_column(
        String(20), default=DeletionRequestStatus.PENDING.value, nullable=False
    )
    admin_notes: Mapped[str | None] = mapped_column(String(1000))

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(String(100))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<DeletionRequest user={self.user_id} type={self.request_type} status={self.status}>"
