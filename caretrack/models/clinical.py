"""Clinician-managed records — medications, prescriptions, appointments, reminders."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from caretrack.models.base import Base, PatientRecordMixin, TimestampMixin
from caretrack.models.enums import AppointmentStatus


class Medication(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "medications"

    medication_name: Mapped[str] = mapped_column(String(200), nullable=False)
    dosage: Mapped[str] = mapped_column(String(100), nullable=False)
    frequency: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Prescription(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "prescriptions"

    doctor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    medication_name: Mapped[str] = mapped_column(String(200), nullable=False)
    dosage: Mapped[str] = mapped_column(String(100), nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str | None] = mapped_column(String(20))


class Appointment(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "appointments"

    doctor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default=AppointmentStatus.SCHEDULED.value)
    notes: Mapped[str | None] = mapped_column(Text)


class MedicationReminder(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "medication_reminders"

    medication_name: Mapped[str] = mapped_column(String(200), nullable=False)
    reminder_time: Mapped[str] = mapped_column(String(10), nullable=False, comment="HH:MM")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
