"""Self-tracking logs — glucose, meals, exercise, medication intake.

These are the high-volume tables retention policies mostly target.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from caretrack.models.base import Base, PatientRecordMixin, TimestampMixin


class GlucoseReading(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "glucose_readings"

    glucose_value: Mapped[int] = mapped_column(Integer, nullable=False, comment="mg/dL")
    test_time: Mapped[str | None] = mapped_column(String(50), comment="fasting, before_meal, ...")
    notes: Mapped[str | None] = mapped_column(Text)


class MealLog(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "meal_logs"

    date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    meal_type: Mapped[str | None] = mapped_column(String(50))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    portion_size: Mapped[str | None] = mapped_column(String(100))


class ExerciseLog(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "exercise_logs"

    date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    exercise_type: Mapped[str] = mapped_column(String(100), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    intensity: Mapped[str | None] = mapped_column(String(20))


class MedicationLog(PatientRecordMixin, TimestampMixin, Base):
    __tablename__ = "medication_logs"

    medication_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
