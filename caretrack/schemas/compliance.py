"""Pydantic schemas for the compliance API and service results.

Response models serialize with camelCase aliases (totalFlagged,
byDataType, ...) because dashboards consume them as-is.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from caretrack.models.enums import ActorRole


class CamelModel(BaseModel):
    """Base for payloads exchanged with the dashboards."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Actor(BaseModel):
    """Authenticated caller on whose behalf an operation runs."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole = ActorRole.PATIENT

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)


# ── Retention scan ───────────────────────────────────────────────────


class PolicyFailure(CamelModel):
    """A policy whose scan was rolled back."""

    policy_id: uuid.UUID
    data_type: str
    error: str


class ScanResult(CamelModel):
    total_flagged: int = 0
    policies_scanned: int = 0
    flagged_by_type: dict[str, int] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)
    failures: list[PolicyFailure] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


class ScanRequest(CamelModel):
    """Optional JSON body of the scan operation."""

    data_types: list[str] | None = None


# ── Policies, flags, deletion requests ───────────────────────────────


class PolicyOut(CamelModel):
    id: uuid.UUID
    data_type: str
    retention_days: int
    is_active: bool


class PolicyCreate(CamelModel):
    data_type: str
    retention_days: int


class PolicyUpdate(CamelModel):
    field: Literal["retention_days", "is_active"]
    value: Any


class FlagOut(CamelModel):
    id: uuid.UUID
    data_type: str
    record_id: uuid.UUID
    user_id: uuid.UUID | None = None
    flagged_at: datetime
    action_taken: str
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    notes: str | None = None


class FlagReview(CamelModel):
    decision: Literal["deleted", "retained"]
    notes: str | None = None


class DeletionRequestCreate(CamelModel):
    request_type: Literal["account", "data"]
    reason: str | None = None


class DeletionRequestReview(CamelModel):
    decision: Literal["approved", "rejected"]
    admin_notes: str | None = None


class DeletionRequestOut(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    request_type: str
    reason: str | None = None
    status: str
    admin_notes: str | None = None
    requested_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None


# ── Statistics ───────────────────────────────────────────────────────


class DataTypeStats(CamelModel):
    flagged: int = 0
    deleted: int = 0
    retained: int = 0


class TimelineEntry(CamelModel):
    date: str  # YYYY-MM-DD (UTC)
    flagged: int = 0
    deleted: int = 0
    retained: int = 0


class RetentionStats(CamelModel):
    total_flagged: int = 0
    total_deleted: int = 0
    total_retained: int = 0
    total_pending: int = 0
    estimated_storage_saved: int = Field(default=0, description="KB, estimated from STORAGE_ESTIMATES_KB")
    by_data_type: dict[str, DataTypeStats] = Field(default_factory=dict)
    timeline: list[TimelineEntry] = Field(default_factory=list)
