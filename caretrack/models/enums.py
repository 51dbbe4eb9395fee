"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store `.value`.
"""

from __future__ import annotations

from enum import Enum


class RetentionDataType(str, Enum):
    """Record categories a retention policy can govern."""

    GLUCOSE_READINGS = "glucose_readings"
    MEAL_LOGS = "meal_logs"
    EXERCISE_LOGS = "exercise_logs"
    MEDICATION_LOGS = "medication_logs"
    APPOINTMENTS = "appointments"
    PRESCRIPTIONS = "prescriptions"
    AUDIT_LOGS = "audit_logs"


class FlagAction(str, Enum):
    """Disposition of a retention flag. Only PENDING is mutable."""

    PENDING = "pending"
    DELETED = "deleted"
    RETAINED = "retained"


class DeletionRequestType(str, Enum):
    """What a user asked to have erased."""

    ACCOUNT = "account"
    DATA = "data"


class DeletionRequestStatus(str, Enum):
    """Deletion request lifecycle: pending -> approved|rejected, approved -> completed."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ActorRole(str, Enum):
    """Role of whoever triggered an audited action."""

    PATIENT = "patient"
    CLINICIAN = "clinician"
    ADMIN = "admin"
    SYSTEM = "system"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
