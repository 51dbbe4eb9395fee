"""AuditLog model — append-only trail of compliance-relevant actions.

Rows are written only by the audit subscriber. The application layer
never updates or deletes them.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from caretrack.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_logs"

    actor_id: Mapped[str | None] = mapped_column(String(100), index=True, comment="User ID or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="patient, clinician, admin, system")

    # Action tag from AuditAction
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    target_entity: Mapped[str] = mapped_column(String(100), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100))

    # `metadata` is reserved on declarative classes, so the attribute is renamed
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, default=dict)

    def __repr__(self) -> str:
        return f"<AuditLog action={self.action} actor={self.actor_id}>"
