"""SQLAlchemy ORM models for CareTrack.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from caretrack.models.audit import AuditLog
from caretrack.models.base import Base
from caretrack.models.clinical import Appointment, Medication, MedicationReminder, Prescription
from caretrack.models.deletion import DeletionRequest
from caretrack.models.enums import (
    ActorRole,
    AppointmentStatus,
    DeletionRequestStatus,
    DeletionRequestType,
    FlagAction,
    RetentionDataType,
)
from caretrack.models.profile import PatientDetails, Profile
from caretrack.models.retention import RetentionFlag, RetentionPolicy
from caretrack.models.tracking import ExerciseLog, GlucoseReading, MealLog, MedicationLog

__all__ = [
    # Base
    "Base",
    # Compliance models
    "AuditLog",
    "RetentionPolicy",
    "RetentionFlag",
    "DeletionRequest",
    # Domain models
    "Profile",
    "PatientDetails",
    "GlucoseReading",
    "MealLog",
    "ExerciseLog",
    "MedicationLog",
    "Medication",
    "Prescription",
    "Appointment",
    "MedicationReminder",
    # Enums
    "RetentionDataType",
    "FlagAction",
    "DeletionRequestType",
    "DeletionRequestStatus",
    "ActorRole",
    "AppointmentStatus",
]
