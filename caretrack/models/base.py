"""SQLAlchemy declarative base and shared mixins.

Every table gets `id`, `created_at`, and `updated_at` via the TimestampMixin.
Patient-owned health records also carry `patient_id` via PatientRecordMixin;
`created_at` is the age a retention policy is measured against.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models.

    Timestamps are always timezone-aware and UUIDs map to native columns.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
        uuid.UUID: UUID(as_uuid=True),
    }


class TimestampMixin:
    """Mixin adding id (UUID), created_at, and updated_at to every model.

    Uses server-side defaults so timestamps are set by PostgreSQL.
    created_at is indexed for retention cutoff queries.
    """

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class PatientRecordMixin:
    """Owner column shared by every per-patient tracking and clinical table.

    Exports select on it and erasure of a patient's data deletes by it.
    """

    patient_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
