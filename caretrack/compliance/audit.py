"""Audit trail — best-effort, append-only record of compliance actions.

``AuditLogger.record`` turns an action into a SystemEvent and puts it on
the event channel (after commit, when recorded on a request session);
``audit_on_event`` (a global subscriber) persists it to
the audit_logs table with its own session.

Neither side ever raises. Auditing is a traceability mechanism only: it is
not exactly-once and nothing may base a correctness decision on it.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.db.engine import async_session_factory
from caretrack.events import buffer_event, emit
from caretrack.models.audit import AuditLog
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction, SystemEvent

logger = logging.getLogger(__name__)


class AuditLogger:
    """Emits audit events on behalf of the compliance workflows."""

    async def record(
        self,
        actor: Actor | None,
        action: AuditAction,
        target_entity: str,
        target_id: Any = None,
        metadata: dict[str, Any] | None = None,
        source_module: str | None = None,
        db: AsyncSession | None = None,
    ) -> None:
        """Queue one audit entry. Failures are logged and swallowed.

        When ``db`` is a request session the entry waits for its commit
        and is dropped if the transaction rolls back.
        """
        try:
            event = SystemEvent(
                action=action,
                actor_id=actor.id if actor is not None else None,
                actor_role=actor.role.value if actor is not None else None,
                target_entity=target_entity,
                target_id=str(target_id) if target_id is not None else None,
                data=metadata or {},
                source_module=source_module,
            )
            if not buffer_event(db, event):
                await emit(event)
        except Exception:
            logger.exception(
                "Failed to emit audit entry: %s on %s/%s", action.value, target_entity, target_id
            )


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_logs table.

    Called by the event worker for every emitted event. Failures are
    logged and swallowed; audit logging must never crash the main
    application flow.
    """
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                action=event.action.value,
                target_entity=event.target_entity,
                target_id=event.target_id,
                details=event.data,
                created_at=event.timestamp,
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (target=%s/%s)",
            event.action.value,
            event.target_entity,
            event.target_id,
        )


# Module-level singleton
audit_logger = AuditLogger()
