"""Profile and patient detail models — one row each per user.

Owned by the profile screens; the compliance engine only reads them
for data export.
"""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from caretrack.models.base import Base, TimestampMixin


class Profile(TimestampMixin, Base):
    """Basic personal information."""

    __tablename__ = "profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(200))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(30))
    date_of_birth: Mapped[date | None] = mapped_column(Date)


class PatientDetails(TimestampMixin, Base):
    """Medical background supplied by the patient."""

    __tablename__ = "patient_details"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    medical_history: Mapped[str | None] = mapped_column(Text)
    allergies: Mapped[list[str] | None] = mapped_column(ARRAY(String(100)))
    current_medications: Mapped[list[str] | None] = mapped_column(ARRAY(String(100)))
    emergency_contact_name: Mapped[str | None] = mapped_column(String(200))
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(30))
    insurance_provider: Mapped[str | None] = mapped_column(String(200))
    insurance_id: Mapped[str | None] = mapped_column(String(100))
