"""Initial schema — compliance tables, domain tables, default retention policies.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None

# Seeded policies: (data_type, retention_days, is_active)
DEFAULT_POLICIES: list[tuple[str, int, bool]] = [
    ("glucose_readings", 730, True),
    ("meal_logs", 365, True),
    ("exercise_logs", 365, True),
    ("medication_logs", 730, True),
    ("appointments", 1095, True),
    ("prescriptions", 2555, True),
    ("audit_logs", 2190, True),
]

AUDIT_IMMUTABLE_FUNCTION = """
CREATE FUNCTION audit_logs_immutable() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'audit_logs is append-only (% rejected)', TG_OP;
END;
$$ LANGUAGE plpgsql
"""


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    ]


def _owner(name: str = "patient_id", unique: bool = False) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=False, index=not unique, unique=unique)


def upgrade() -> None:
    # ── Compliance tables ──────────────────────────────────────────────

    op.create_table(
        "audit_logs",
        sa.Column("actor_id", sa.String(100), index=True, comment="User ID or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="patient, clinician, admin, system"),
        sa.Column("action", sa.String(100), nullable=False, index=True),
        sa.Column("target_entity", sa.String(100), nullable=False),
        sa.Column("target_id", sa.String(100)),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    # Append-only for every role, the table owner included
    op.execute(AUDIT_IMMUTABLE_FUNCTION)
    op.execute(
        "CREATE TRIGGER audit_logs_immutable BEFORE UPDATE OR DELETE ON audit_logs "
        "FOR EACH ROW EXECUTE FUNCTION audit_logs_immutable()"
    )

    policies = op.create_table(
        "data_retention_policies",
        sa.Column("data_type", sa.String(50), nullable=False, unique=True),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("retention_days > 0", name="ck_retention_days_positive"),
        *_base_columns(),
    )

    op.create_table(
        "data_retention_flags",
        sa.Column("data_type", sa.String(50), nullable=False, index=True),
        sa.Column("record_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("flagged_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("action_taken", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("reviewed_by", sa.String(100)),
        sa.Column("notes", sa.String(1000)),
        sa.CheckConstraint(
            "action_taken IN ('pending', 'deleted', 'retained')", name="ck_flag_action_taken"
        ),
        sa.CheckConstraint(
            "(action_taken = 'pending') = (reviewed_at IS NULL)", name="ck_flag_reviewed_at"
        ),
        *_base_columns(),
    )
    op.create_index(
        "uq_retention_flags_pending",
        "data_retention_flags",
        ["data_type", "record_id"],
        unique=True,
        postgresql_where=sa.text("action_taken = 'pending'"),
    )

    op.create_table(
        "deletion_requests",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("request_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(1000)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("admin_notes", sa.String(1000)),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("reviewed_by", sa.String(100)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("request_type IN ('account', 'data')", name="ck_deletion_request_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')", name="ck_deletion_request_status"
        ),
        *_base_columns(),
    )
    op.create_index(
        "uq_deletion_requests_pending_user",
        "deletion_requests",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.bulk_insert(policies, [
        {"data_type": dt, "retention_days": days, "is_active": active}
        for dt, days, active in DEFAULT_POLICIES
    ])

    # ── Domain tables ──────────────────────────────────────────────────

    op.create_table(
        "profiles",
        _owner("user_id", unique=True),
        sa.Column("full_name", sa.String(200)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(30)),
        sa.Column("date_of_birth", sa.Date()),
        *_base_columns(),
    )

    op.create_table(
        "patient_details",
        _owner("user_id", unique=True),
        sa.Column("medical_history", sa.Text()),
        sa.Column("allergies", postgresql.ARRAY(sa.String(100))),
        sa.Column("current_medications", postgresql.ARRAY(sa.String(100))),
        sa.Column("emergency_contact_name", sa.String(200)),
        sa.Column("emergency_contact_phone", sa.String(30)),
        sa.Column("insurance_provider", sa.String(200)),
        sa.Column("insurance_id", sa.String(100)),
        *_base_columns(),
    )

    op.create_table(
        "glucose_readings",
        _owner(),
        sa.Column("glucose_value", sa.Integer(), nullable=False, comment="mg/dL"),
        sa.Column("test_time", sa.String(50)),
        sa.Column("notes", sa.Text()),
        *_base_columns(),
    )

    op.create_table(
        "meal_logs",
        _owner(),
        sa.Column("date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meal_type", sa.String(50)),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("portion_size", sa.String(100)),
        *_base_columns(),
    )

    op.create_table(
        "exercise_logs",
        _owner(),
        sa.Column("date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exercise_type", sa.String(100), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("intensity", sa.String(20)),
        *_base_columns(),
    )

    op.create_table(
        "medication_logs",
        _owner(),
        sa.Column("medication_id", postgresql.UUID(as_uuid=True)),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text()),
        *_base_columns(),
    )

    op.create_table(
        "medications",
        _owner(),
        sa.Column("medication_name", sa.String(200), nullable=False),
        sa.Column("dosage", sa.String(100), nullable=False),
        sa.Column("frequency", sa.String(100), nullable=False),
        sa.Column("start_date", sa.Date()),
        sa.Column("is_active", sa.Boolean()),
        *_base_columns(),
    )

    op.create_table(
        "prescriptions",
        _owner(),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("medication_name", sa.String(200), nullable=False),
        sa.Column("dosage", sa.String(100), nullable=False),
        sa.Column("instructions", sa.Text()),
        sa.Column("status", sa.String(20)),
        *_base_columns(),
    )

    op.create_table(
        "appointments",
        _owner(),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20)),
        sa.Column("notes", sa.Text()),
        *_base_columns(),
    )

    op.create_table(
        "medication_reminders",
        _owner(),
        sa.Column("medication_name", sa.String(200), nullable=False),
        sa.Column("reminder_time", sa.String(10), nullable=False, comment="HH:MM"),
        sa.Column("is_active", sa.Boolean()),
        *_base_columns(),
    )

    # Retention scans filter on created_at
    for table in (
        "glucose_readings", "meal_logs", "exercise_logs", "medication_logs",
        "appointments", "prescriptions",
    ):
        op.create_index(f"ix_{table}_created_at", table, ["created_at"])


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS audit_logs_immutable ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS audit_logs_immutable()")
    for table in (
        "medication_reminders",
        "appointments",
        "prescriptions",
        "medications",
        "medication_logs",
        "exercise_logs",
        "meal_logs",
        "glucose_readings",
        "patient_details",
        "profiles",
        "deletion_requests",
        "data_retention_flags",
        "data_retention_policies",
        "audit_logs",
    ):
        op.drop_table(table)
