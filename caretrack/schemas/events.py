"""SystemEvent schema — every audited action flows through here.

The compliance services emit a SystemEvent per audited action.
Subscribers (audit writer, change feed) consume them asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Fixed audit vocabulary. Values are stored verbatim in audit_logs.action."""

    # Retention
    RUN_RETENTION_CHECK = "RUN_RETENTION_CHECK"
    REVIEW_RETENTION_FLAG = "REVIEW_RETENTION_FLAG"
    CREATE_RETENTION_POLICY = "CREATE_RETENTION_POLICY"
    UPDATE_RETENTION_POLICY = "UPDATE_RETENTION_POLICY"

    # Deletion requests
    REQUEST_ACCOUNT_DELETION = "REQUEST_ACCOUNT_DELETION"
    REQUEST_DATA_DELETION = "REQUEST_DATA_DELETION"
    REVIEW_DELETION_REQUEST = "REVIEW_DELETION_REQUEST"
    COMPLETE_DELETION_REQUEST = "COMPLETE_DELETION_REQUEST"

    # Export
    EXPORT_USER_DATA = "EXPORT_USER_DATA"


# Table each action touches; drives dashboard refresh notifications.
# EXPORT_USER_DATA is read-only and therefore absent.
CHANGED_TABLES: dict[AuditAction, str] = {
    AuditAction.RUN_RETENTION_CHECK: "data_retention_flags",
    AuditAction.REVIEW_RETENTION_FLAG: "data_retention_flags",
    AuditAction.CREATE_RETENTION_POLICY: "data_retention_policies",
    AuditAction.UPDATE_RETENTION_POLICY: "data_retention_policies",
    AuditAction.REQUEST_ACCOUNT_DELETION: "deletion_requests",
    AuditAction.REQUEST_DATA_DELETION: "deletion_requests",
    AuditAction.REVIEW_DELETION_REQUEST: "deletion_requests",
    AuditAction.COMPLETE_DELETION_REQUEST: "deletion_requests",
}


class SystemEvent(BaseModel):
    """One audited action.

    Immutable once created. Consumed by:
    - audit_on_event → writes to audit_logs table
    - change feed → publishes a refresh hint to Redis
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    action: AuditAction
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    actor_id: str | None = None
    actor_role: str | None = None
    target_entity: str
    target_id: str | None = None

    # Opaque key/value payload stored as audit_logs.metadata
    data: dict[str, Any] = Field(default_factory=dict)

    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
