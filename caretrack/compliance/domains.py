"""Domain adapter registry.

Each stored record category is described once by a ``TableAdapter``: which
table it lives in, which column names the owner, and how it is shown in a
data export. The retention scanner, the flag review cascade, and the data
export all go through the registry, so adding a domain means registering
one adapter.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.models.audit import AuditLog
from caretrack.models.clinical import Appointment, Medication, MedicationReminder, Prescription
from caretrack.models.enums import RetentionDataType
from caretrack.models.profile import PatientDetails, Profile
from caretrack.models.tracking import ExerciseLog, GlucoseReading, MealLog, MedicationLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateRecord:
    """A record older than a policy cutoff."""

    id: uuid.UUID
    owner_id: uuid.UUID | None


@dataclass(frozen=True)
class ExportColumn:
    """One column of a domain table in the document export."""

    header: str
    render: Callable[[dict[str, Any]], str]


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _coerce_owner(value: Any) -> uuid.UUID | None:
    """Owner columns hold UUIDs, except audit actors which may be 'system'."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# ── Column renderers ─────────────────────────────────────────────────


def _text(key: str, default: str = "") -> Callable[[dict[str, Any]], str]:
    def render(row: dict[str, Any]) -> str:
        value = row.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, list):
            return ", ".join(str(v) for v in value) or default
        return str(value)

    return render


def _day(key: str) -> Callable[[dict[str, Any]], str]:
    """ISO timestamp -> YYYY-MM-DD."""

    def render(row: dict[str, Any]) -> str:
        value = row.get(key)
        return str(value)[:10] if value else "N/A"

    return render


def _clock(key: str) -> Callable[[dict[str, Any]], str]:
    """ISO timestamp -> HH:MM."""

    def render(row: dict[str, Any]) -> str:
        value = row.get(key)
        return str(value)[11:16] if value and len(str(value)) >= 16 else "N/A"

    return render


def _flag(key: str, yes: str, no: str) -> Callable[[dict[str, Any]], str]:
    def render(row: dict[str, Any]) -> str:
        return yes if row.get(key) else no

    return render


# ── Adapter ──────────────────────────────────────────────────────────


class TableAdapter:
    """Retention and export capabilities of one domain table.

    Args:
        name: Registry key. For retained domains this is the
            RetentionDataType value stored on policies and flags.
        model: ORM model of the table.
        owner_column: Attribute holding the owning user's id.
        export_key: Top-level key in the structured export.
        title: Section title in the document export.
        columns: Table columns in the document export.
        data_type: Set when retention policies may target this table.
        order_column: Newest-first ordering for exports.
        erasable: False when a "deleted" decision must not erase rows.
        exportable: False to leave the table out of user exports.
        single: One row per user; rendered as a field/value table.
    """

    def __init__(
        self,
        name: str,
        model: type[Any],
        owner_column: str,
        *,
        export_key: str,
        title: str,
        columns: list[ExportColumn],
        data_type: RetentionDataType | None = None,
        order_column: str = "created_at",
        erasable: bool = True,
        exportable: bool = True,
        single: bool = False,
    ) -> None:
        self.name = name
        self.model = model
        self.owner_column = owner_column
        self.export_key = export_key
        self.title = title
        self.columns = columns
        self.data_type = data_type
        self.order_column = order_column
        self.erasable = erasable
        self.exportable = exportable
        self.single = single

    def __repr__(self) -> str:
        return f"<TableAdapter {self.name} table={self.model.__tablename__}>"

    @property
    def _owner(self) -> Any:
        return getattr(self.model, self.owner_column)

    def _owner_value(self, user_id: uuid.UUID) -> Any:
        # String-typed owner columns (audit actor ids) compare against text
        column_type = self._owner.property.columns[0].type
        if getattr(column_type, "python_type", None) is str:
            return str(user_id)
        return user_id

    def owner_of(self, record: Any) -> uuid.UUID | None:
        """Owning user id of an ORM instance or exported row dict."""
        if isinstance(record, dict):
            return _coerce_owner(record.get(self.owner_column))
        return _coerce_owner(getattr(record, self.owner_column, None))

    async def fetch_records_older_than(
        self, db: AsyncSession, cutoff: datetime
    ) -> list[CandidateRecord]:
        """Ids and owners of rows created strictly before ``cutoff``."""
        result = await db.execute(
            select(self.model.id, self._owner).where(self.model.created_at < cutoff)
        )
        return [
            CandidateRecord(id=row[0], owner_id=_coerce_owner(row[1]))
            for row in result.all()
        ]

    async def fetch_owned_by(self, db: AsyncSession, user_id: uuid.UUID) -> list[dict[str, Any]]:
        """All rows owned by ``user_id``, newest first, as JSON-ready dicts."""
        result = await db.execute(
            select(self.model)
            .where(self._owner == self._owner_value(user_id))
            .order_by(getattr(self.model, self.order_column).desc())
        )
        return [self.to_dict(row) for row in result.scalars().all()]

    async def delete_record(self, db: AsyncSession, record_id: uuid.UUID) -> int:
        """Delete one row by id. Returns the number of rows removed (0 or 1)."""
        result = await db.execute(delete(self.model).where(self.model.id == record_id))
        return result.rowcount  # type: ignore[attr-defined]

    async def delete_owned_by(self, db: AsyncSession, user_id: uuid.UUID) -> int:
        """Delete every row owned by ``user_id``. Returns the row count."""
        result = await db.execute(delete(self.model).where(self._owner == self._owner_value(user_id)))
        return result.rowcount  # type: ignore[attr-defined]

    def to_dict(self, record: Any) -> dict[str, Any]:
        mapper = inspect(self.model)
        return {
            attr.columns[0].name: _jsonable(getattr(record, attr.key))
            for attr in mapper.column_attrs
        }


class DomainRegistry:
    """Name -> TableAdapter lookup, in registration order."""

    def __init__(self) -> None:
        self._adapters: dict[str, TableAdapter] = {}

    def register(self, adapter: TableAdapter) -> TableAdapter:
        if adapter.name in self._adapters:
            msg = f"Domain adapter already registered: {adapter.name}"
            raise ValueError(msg)
        self._adapters[adapter.name] = adapter
        logger.debug("Registered domain adapter %s", adapter.name)
        return adapter

    def get(self, name: str) -> TableAdapter | None:
        return self._adapters.get(name)

    def for_data_type(self, data_type: str) -> TableAdapter | None:
        """Adapter a retention policy/flag of ``data_type`` resolves into."""
        adapter = self._adapters.get(data_type)
        if adapter is None or adapter.data_type is None:
            return None
        return adapter

    def exportable(self) -> list[TableAdapter]:
        return [a for a in self._adapters.values() if a.exportable]

    def __iter__(self) -> Iterator[TableAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry() -> DomainRegistry:
    """Registry with every CareTrack domain table."""
    registry = DomainRegistry()

    registry.register(TableAdapter(
        "profiles", Profile, "user_id",
        export_key="profile",
        title="Personal Information",
        single=True,
        columns=[
            ExportColumn("Full Name", _text("full_name", "N/A")),
            ExportColumn("Email", _text("email", "N/A")),
            ExportColumn("Phone", _text("phone", "N/A")),
            ExportColumn("Date of Birth", _text("date_of_birth", "N/A")),
        ],
    ))
    registry.register(TableAdapter(
        "patient_details", PatientDetails, "user_id",
        export_key="patientDetails",
        title="Medical Information",
        single=True,
        columns=[
            ExportColumn("Medical History", _text("medical_history", "N/A")),
            ExportColumn("Allergies", _text("allergies", "None")),
            ExportColumn("Current Medications", _text("current_medications", "None")),
            ExportColumn("Emergency Contact", _text("emergency_contact_name", "N/A")),
            ExportColumn("Emergency Phone", _text("emergency_contact_phone", "N/A")),
            ExportColumn("Insurance Provider", _text("insurance_provider", "N/A")),
            ExportColumn("Insurance ID", _text("insurance_id", "N/A")),
        ],
    ))
    registry.register(TableAdapter(
        "glucose_readings", GlucoseReading, "patient_id",
        data_type=RetentionDataType.GLUCOSE_READINGS,
        export_key="glucoseReadings",
        title="Glucose Readings",
        columns=[
            ExportColumn("Date", _day("created_at")),
            ExportColumn("Time", _text("test_time", "N/A")),
            ExportColumn("Value (mg/dL)", _text("glucose_value")),
            ExportColumn("Notes", _text("notes")),
        ],
    ))
    registry.register(TableAdapter(
        "medications", Medication, "patient_id",
        export_key="medications",
        title="Medications",
        columns=[
            ExportColumn("Name", _text("medication_name")),
            ExportColumn("Dosage", _text("dosage")),
            ExportColumn("Frequency", _text("frequency")),
            ExportColumn("Start Date", _day("start_date")),
            ExportColumn("Status", _flag("is_active", "Active", "Inactive")),
        ],
    ))
    registry.register(TableAdapter(
        "medication_logs", MedicationLog, "patient_id",
        data_type=RetentionDataType.MEDICATION_LOGS,
        order_column="taken_at",
        export_key="medicationLogs",
        title="Medication Logs",
        columns=[
            ExportColumn("Date", _day("taken_at")),
            ExportColumn("Time", _clock("taken_at")),
            ExportColumn("Notes", _text("notes")),
        ],
    ))
    registry.register(TableAdapter(
        "appointments", Appointment, "patient_id",
        data_type=RetentionDataType.APPOINTMENTS,
        order_column="start_time",
        export_key="appointments",
        title="Appointments",
        columns=[
            ExportColumn("Date", _day("start_time")),
            ExportColumn("Time", _clock("start_time")),
            ExportColumn("Status", _text("status")),
            ExportColumn("Notes", _text("notes")),
        ],
    ))
    registry.register(TableAdapter(
        "exercise_logs", ExerciseLog, "patient_id",
        data_type=RetentionDataType.EXERCISE_LOGS,
        order_column="date_time",
        export_key="exerciseLogs",
        title="Exercise Logs",
        columns=[
            ExportColumn("Date", _day("date_time")),
            ExportColumn("Type", _text("exercise_type")),
            ExportColumn("Duration (min)", _text("duration_minutes")),
            ExportColumn("Intensity", _text("intensity", "N/A")),
        ],
    ))
    registry.register(TableAdapter(
        "meal_logs", MealLog, "patient_id",
        data_type=RetentionDataType.MEAL_LOGS,
        order_column="date_time",
        export_key="mealLogs",
        title="Meal Logs",
        columns=[
            ExportColumn("Date", _day("date_time")),
            ExportColumn("Type", _text("meal_type", "N/A")),
            ExportColumn("Description", _text("description")),
            ExportColumn("Portion", _text("portion_size", "N/A")),
        ],
    ))
    registry.register(TableAdapter(
        "prescriptions", Prescription, "patient_id",
        data_type=RetentionDataType.PRESCRIPTIONS,
        export_key="prescriptions",
        title="Prescriptions",
        columns=[
            ExportColumn("Date", _day("created_at")),
            ExportColumn("Medication", _text("medication_name")),
            ExportColumn("Dosage", _text("dosage")),
            ExportColumn("Instructions", _text("instructions")),
        ],
    ))
    registry.register(TableAdapter(
        "medication_reminders", MedicationReminder, "patient_id",
        export_key="medicationReminders",
        title="Medication Reminders",
        columns=[
            ExportColumn("Medication", _text("medication_name")),
            ExportColumn("Time", _text("reminder_time")),
            ExportColumn("Status", _flag("is_active", "Active", "Paused")),
        ],
    ))
    # Audit rows age out under a policy but stay append-only: a "deleted"
    # decision is recorded without erasing, and users never export them.
    registry.register(TableAdapter(
        "audit_logs", AuditLog, "actor_id",
        data_type=RetentionDataType.AUDIT_LOGS,
        export_key="auditLogs",
        title="Audit Logs",
        erasable=False,
        exportable=False,
        columns=[
            ExportColumn("Date", _day("created_at")),
            ExportColumn("Action", _text("action")),
        ],
    ))
    return registry


# Module-level singleton
domain_registry = build_default_registry()
