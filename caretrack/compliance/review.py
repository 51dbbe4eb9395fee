"""Flag review workflow — human disposition of retention flags.

A flag leaves ``pending`` exactly once. The flag row is locked
(SELECT ... FOR UPDATE) while it is checked and written, so two reviewers
racing on the same flag get one success and one ConflictError.

A "deleted" decision also erases the referenced domain record, in the
same transaction as the flag update: the flag is written first, then the
record is deleted, both inside one SAVEPOINT. If the delete fails the
savepoint is rolled back and the flag stays pending, so a flag never says
"deleted" while the record survives. Domains registered as non-erasable
(audit logs) record the decision without touching the row.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.compliance.audit import audit_logger
from caretrack.compliance.domains import DomainRegistry, domain_registry
from caretrack.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    store_errors,
)
from caretrack.models.enums import FlagAction
from caretrack.models.retention import RetentionFlag
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

logger = logging.getLogger(__name__)


def parse_decision(decision: str | FlagAction) -> FlagAction:
    try:
        action = FlagAction(decision)
    except ValueError:
        action = None
    if action is None or action is FlagAction.PENDING:
        raise ValidationError("decision must be 'deleted' or 'retained'")
    return action


class FlagReviewWorkflow:
    """Lists and disposes of retention flags."""

    def __init__(self, registry: DomainRegistry | None = None) -> None:
        self._registry = registry if registry is not None else domain_registry

    async def list_pending(self, db: AsyncSession, limit: int | None = None) -> list[RetentionFlag]:
        """Pending flags, newest first."""
        stmt = (
            select(RetentionFlag)
            .where(RetentionFlag.action_taken == FlagAction.PENDING.value)
            .order_by(RetentionFlag.flagged_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with store_errors():
            result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self, db: AsyncSession, limit: int | None = None) -> list[RetentionFlag]:
        """Every flag regardless of disposition, newest first."""
        stmt = select(RetentionFlag).order_by(RetentionFlag.flagged_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with store_errors():
            result = await db.execute(stmt)
        return list(result.scalars().all())

    async def review(
        self,
        db: AsyncSession,
        flag_id: uuid.UUID,
        decision: str | FlagAction,
        reviewer: Actor | None,
        notes: str | None = None,
    ) -> RetentionFlag:
        """Record a reviewer's decision on a pending flag.

        Raises:
            AuthenticationError: no reviewer identity.
            AuthorizationError: reviewer is not an administrator.
            ValidationError: decision is not deleted/retained, or a
                "deleted" decision targets a data type with no adapter.
            NotFoundError: no flag with ``flag_id``.
            ConflictError: the flag was already reviewed.
            StoreError: the store failed; nothing was changed.
        """
        if reviewer is None:
            raise AuthenticationError("A reviewer identity is required")
        if not reviewer.is_admin:
            raise AuthorizationError("Only administrators can review retention flags")
        action = parse_decision(decision)

        with store_errors():
            result = await db.execute(
                select(RetentionFlag).where(RetentionFlag.id == flag_id).with_for_update()
            )
            flag = result.scalar_one_or_none()
        if flag is None:
            raise NotFoundError("Retention flag", flag_id)
        if flag.action_taken != FlagAction.PENDING.value:
            raise ConflictError(f"Retention flag {flag_id} was already reviewed ({flag.action_taken})")

        adapter = self._registry.for_data_type(flag.data_type)
        if action is FlagAction.DELETED and adapter is None:
            raise ValidationError(f"No domain adapter can erase {flag.data_type} records")
        erase = action is FlagAction.DELETED and adapter is not None and adapter.erasable

        erased = 0
        with store_errors():
            async with db.begin_nested():
                flag.action_taken = action.value
                flag.reviewed_at = datetime.now(UTC)
                flag.reviewed_by = reviewer.id
                flag.notes = notes
                await db.flush()
                if erase:
                    erased = await adapter.delete_record(db, flag.record_id)

        if erase and erased == 0:
            logger.info("Record %s:%s was already gone at review time", flag.data_type, flag.record_id)

        await audit_logger.record(
            reviewer,
            AuditAction.REVIEW_RETENTION_FLAG,
            "data_retention_flag",
            flag.id,
            {
                "action": action.value,
                "notes": notes,
                "data_type": flag.data_type,
                "record_id": str(flag.record_id),
                "record_erased": bool(erased),
            },
            source_module="compliance.review",
            db=db,
        )
        logger.info(
            "Retention flag %s reviewed: %s by %s (erased=%d)", flag.id, action.value, reviewer.id, erased
        )
        return flag


# Module-level singleton
flag_review = FlagReviewWorkflow()
