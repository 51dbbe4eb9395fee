"""Retention policy store — administrator-managed max age per data type.

Policies are never deleted; switching ``is_active`` off is how a policy
is retired.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.compliance.audit import audit_logger
from caretrack.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
    store_errors,
)
from caretrack.models.enums import RetentionDataType
from caretrack.models.retention import RetentionPolicy
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: frozenset[str] = frozenset({"retention_days", "is_active"})


def _require_admin(actor: Actor | None) -> None:
    if actor is None or not actor.is_admin:
        raise AuthorizationError("Retention policies can only be changed by an administrator")


def validate_retention_days(value: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("retention_days must be an integer")
    if value <= 0:
        raise ValidationError("retention_days must be greater than 0")
    return value


def validate_data_type(value: str) -> RetentionDataType:
    try:
        return RetentionDataType(value)
    except ValueError:
        valid = ", ".join(t.value for t in RetentionDataType)
        raise ValidationError(f"Unknown data_type '{value}'. Must be one of: {valid}") from None


class RetentionPolicyStore:
    """Stateless policy operations — AsyncSession passed per call."""

    async def list(self, db: AsyncSession, *, active_only: bool = False) -> list[RetentionPolicy]:
        """All policies ordered by data_type."""
        stmt = select(RetentionPolicy).order_by(RetentionPolicy.data_type)
        if active_only:
            stmt = stmt.where(RetentionPolicy.is_active.is_(True))
        with store_errors():
            result = await db.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        data_type: str,
        retention_days: int,
        actor: Actor | None,
    ) -> RetentionPolicy:
        """Add the policy for a data type that has none yet."""
        _require_admin(actor)
        dt = validate_data_type(data_type)
        days = validate_retention_days(retention_days)

        with store_errors():
            existing = await db.execute(
                select(RetentionPolicy.id).where(RetentionPolicy.data_type == dt.value)
            )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"A retention policy for {dt.value} already exists")

        policy = RetentionPolicy(data_type=dt.value, retention_days=days, is_active=True)
        try:
            async with db.begin_nested():
                db.add(policy)
                await db.flush()
        except IntegrityError as exc:
            raise ConflictError(f"A retention policy for {dt.value} already exists") from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

        await audit_logger.record(
            actor,
            AuditAction.CREATE_RETENTION_POLICY,
            "data_retention_policy",
            policy.id,
            {"data_type": dt.value, "retention_days": days},
            source_module="compliance.policies",
            db=db,
        )
        logger.info("Retention policy created: %s days=%d", dt.value, days)
        return policy

    async def update(
        self,
        db: AsyncSession,
        policy_id: uuid.UUID,
        field: str,
        value: Any,
        actor: Actor | None,
    ) -> RetentionPolicy:
        """Set one field of a policy. Validation happens before any write."""
        _require_admin(actor)
        if field not in UPDATABLE_FIELDS:
            raise ValidationError(f"Field '{field}' cannot be updated")
        if field == "retention_days":
            value = validate_retention_days(value)
        elif not isinstance(value, bool):
            raise ValidationError("is_active must be a boolean")

        with store_errors():
            policy = await db.get(RetentionPolicy, policy_id)
        if policy is None:
            raise NotFoundError("Retention policy", policy_id)

        setattr(policy, field, value)
        with store_errors():
            await db.flush()

        await audit_logger.record(
            actor,
            AuditAction.UPDATE_RETENTION_POLICY,
            "data_retention_policy",
            policy_id,
            {"field": field, "value": value},
            source_module="compliance.policies",
            db=db,
        )
        logger.info("Retention policy %s updated: %s=%s", policy.data_type, field, value)
        return policy


# Module-level singleton
policy_store = RetentionPolicyStore()
