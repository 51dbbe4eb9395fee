"""Deletion request workflow — user-initiated right-to-erasure requests.

A user may hold at most one pending request. The partial unique index on
deletion_requests(user_id) WHERE status = 'pending' enforces this, so two
concurrent submissions cannot both succeed; the loser gets ConflictError.

Reviewing a request records the admin decision only. Erasure on approval
is an extension point: a purge handler may be registered per request
type. ``purge_health_data`` is the stock handler for "data" requests;
account removal has no stock handler because accounts live with the
identity provider.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.compliance.audit import audit_logger
from caretrack.compliance.domains import domain_registry
from caretrack.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
    store_errors,
)
from caretrack.models.deletion import DeletionRequest
from caretrack.models.enums import DeletionRequestStatus, DeletionRequestType
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

logger = logging.getLogger(__name__)

PurgeHandler = Callable[[AsyncSession, DeletionRequest], Awaitable[None]]

SUBMIT_ACTIONS: dict[DeletionRequestType, AuditAction] = {
    DeletionRequestType.ACCOUNT: AuditAction.REQUEST_ACCOUNT_DELETION,
    DeletionRequestType.DATA: AuditAction.REQUEST_DATA_DELETION,
}

# Kept on a data-only erasure: the account itself stays active
_DATA_PURGE_KEEP: frozenset[str] = frozenset({"profiles"})


def _user_uuid(actor: Actor) -> uuid.UUID:
    try:
        return uuid.UUID(actor.id)
    except ValueError:
        raise ValidationError(f"Caller identity '{actor.id}' is not a user id") from None


def _require_admin(actor: Actor | None) -> Actor:
    if actor is None:
        raise AuthenticationError("An administrator identity is required")
    if not actor.is_admin:
        raise AuthorizationError("Only administrators can review deletion requests")
    return actor


async def purge_health_data(db: AsyncSession, request: DeletionRequest) -> None:
    """Erase every erasable record the requester owns, except the profile."""
    counts: dict[str, int] = {}
    for adapter in domain_registry:
        if not adapter.erasable or adapter.name in _DATA_PURGE_KEEP:
            continue
        counts[adapter.name] = await adapter.delete_owned_by(db, request.user_id)
    logger.info("Purged health data for user=%s: %s", request.user_id, counts)


class DeletionRequestWorkflow:
    """Submit, review, and complete deletion requests."""

    def __init__(self) -> None:
        self._purge_handlers: dict[DeletionRequestType, PurgeHandler] = {}

    def register_purge_handler(self, request_type: DeletionRequestType, handler: PurgeHandler) -> None:
        """Run ``handler`` when a request of ``request_type`` is approved.

        The request moves straight to completed once the handler returns.
        """
        self._purge_handlers[request_type] = handler
        logger.info("Registered purge handler %s for %s requests", handler.__name__, request_type.value)

    async def submit(
        self,
        db: AsyncSession,
        actor: Actor | None,
        request_type: str | DeletionRequestType,
        reason: str | None = None,
    ) -> DeletionRequest:
        """Create a pending request for the calling user.

        Raises:
            AuthenticationError: no caller identity.
            ValidationError: unknown request type.
            ConflictError: the user already has a pending request.
        """
        if actor is None:
            raise AuthenticationError("Sign in to request deletion")
        try:
            rtype = DeletionRequestType(request_type)
        except ValueError:
            raise ValidationError("request_type must be 'account' or 'data'") from None
        user_id = _user_uuid(actor)

        request = DeletionRequest(
            id=uuid.uuid4(),
            user_id=user_id,
            request_type=rtype.value,
            reason=reason or None,
            status=DeletionRequestStatus.PENDING.value,
            requested_at=datetime.now(UTC),
        )
        try:
            async with db.begin_nested():
                db.add(request)
                await db.flush()
        except IntegrityError as exc:
            raise ConflictError("A deletion request is already pending for this user") from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

        await audit_logger.record(
            actor,
            SUBMIT_ACTIONS[rtype],
            "deletion_request",
            user_id,
            {"reason": reason, "request_id": str(request.id)},
            source_module="compliance.deletion",
            db=db,
        )
        logger.info("Deletion requested: user=%s type=%s request=%s", user_id, rtype.value, request.id)
        return request

    async def review(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        decision: str | DeletionRequestStatus,
        actor: Actor | None,
        admin_notes: str | None = None,
    ) -> DeletionRequest:
        """Approve or reject a pending request (admin only)."""
        admin = _require_admin(actor)
        try:
            status = DeletionRequestStatus(decision)
        except ValueError:
            status = None
        if status not in (DeletionRequestStatus.APPROVED, DeletionRequestStatus.REJECTED):
            raise ValidationError("decision must be 'approved' or 'rejected'")

        request = await self._lock(db, request_id)
        if request.status != DeletionRequestStatus.PENDING.value:
            raise ConflictError(f"Deletion request {request_id} is already {request.status}")

        now = datetime.now(UTC)
        request.status = status.value
        request.admin_notes = admin_notes
        request.reviewed_at = now
        request.reviewed_by = admin.id
        with store_errors():
            await db.flush()

        handler = self._purge_handlers.get(DeletionRequestType(request.request_type))
        if status is DeletionRequestStatus.APPROVED and handler is not None:
            with store_errors():
                await handler(db, request)
                request.status = DeletionRequestStatus.COMPLETED.value
                request.completed_at = datetime.now(UTC)
                await db.flush()

        await audit_logger.record(
            admin,
            AuditAction.REVIEW_DELETION_REQUEST,
            "deletion_request",
            request.id,
            {
                "decision": status.value,
                "request_type": request.request_type,
                "user_id": str(request.user_id),
                "admin_notes": admin_notes,
                "purged": request.status == DeletionRequestStatus.COMPLETED.value,
            },
            source_module="compliance.deletion",
            db=db,
        )
        logger.info("Deletion request %s %s by %s", request.id, request.status, admin.id)
        return request

    async def complete(self, db: AsyncSession, request_id: uuid.UUID, actor: Actor | None) -> DeletionRequest:
        """Mark an approved request as carried out (after an external purge)."""
        admin = _require_admin(actor)
        request = await self._lock(db, request_id)
        if request.status != DeletionRequestStatus.APPROVED.value:
            raise ConflictError(f"Only approved requests can be completed (status={request.status})")

        request.status = DeletionRequestStatus.COMPLETED.value
        request.completed_at = datetime.now(UTC)
        with store_errors():
            await db.flush()

        await audit_logger.record(
            admin,
            AuditAction.COMPLETE_DELETION_REQUEST,
            "deletion_request",
            request.id,
            {"request_type": request.request_type, "user_id": str(request.user_id)},
            source_module="compliance.deletion",
            db=db,
        )
        return request

    async def list_for_user(self, db: AsyncSession, user_id: uuid.UUID) -> list[DeletionRequest]:
        """A user's requests, most recent first."""
        with store_errors():
            result = await db.execute(
                select(DeletionRequest)
                .where(DeletionRequest.user_id == user_id)
                .order_by(DeletionRequest.requested_at.desc())
            )
        return list(result.scalars().all())

    async def list_pending(self, db: AsyncSession) -> list[DeletionRequest]:
        """Admin queue: pending requests, oldest first."""
        with store_errors():
            result = await db.execute(
                select(DeletionRequest)
                .where(DeletionRequest.status == DeletionRequestStatus.PENDING.value)
                .order_by(DeletionRequest.requested_at.asc())
            )
        return list(result.scalars().all())

    async def _lock(self, db: AsyncSession, request_id: uuid.UUID) -> DeletionRequest:
        with store_errors():
            result = await db.execute(
                select(DeletionRequest).where(DeletionRequest.id == request_id).with_for_update()
            )
            request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("Deletion request", request_id)
        return request


# Module-level singleton
deletion_workflow = DeletionRequestWorkflow()
