"""Compliance API — FastAPI router over the retention & compliance services.

Admin routes (policies, scan, flag review, stats, deletion queue, change
stream) require HTTP Basic Auth via verify_admin. Patient routes
(deletion requests, export) use the gateway identity.
"""
# ruff: noqa: B008

from __future__ import annotations

import contextlib
import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Literal

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.api.auth import current_actor, verify_admin
from caretrack.compliance.changes import listen_changes
from caretrack.compliance.deletion import deletion_workflow
from caretrack.compliance.export import export_service
from caretrack.compliance.policies import policy_store
from caretrack.compliance.review import flag_review
from caretrack.compliance.scanner import retention_scanner
from caretrack.compliance.stats import stats_aggregator
from caretrack.db.engine import get_session
from caretrack.errors import AuthenticationError, ComplianceError
from caretrack.schemas.compliance import (
    Actor,
    DeletionRequestCreate,
    DeletionRequestOut,
    DeletionRequestReview,
    FlagOut,
    FlagReview,
    PolicyCreate,
    PolicyOut,
    PolicyUpdate,
    RetentionStats,
    ScanRequest,
    ScanResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/compliance", tags=["compliance"])


def install_error_handlers(app: FastAPI) -> None:
    """Map ComplianceError subclasses onto JSON error responses."""

    @app.exception_handler(ComplianceError)
    async def _compliance_error(request: Request, exc: ComplianceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.kind, "detail": exc.message},
        )


# ── Retention policies ───────────────────────────────────────────────


@router.get("/policies", response_model=list[PolicyOut])
async def list_policies(
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> list[PolicyOut]:
    policies = await policy_store.list(db)
    return [PolicyOut.model_validate(p) for p in policies]


@router.post("/policies", response_model=PolicyOut, status_code=status.HTTP_201_CREATED)
async def create_policy(
    body: PolicyCreate,
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> PolicyOut:
    policy = await policy_store.create(db, body.data_type, body.retention_days, admin)
    return PolicyOut.model_validate(policy)


@router.patch("/policies/{policy_id}", response_model=PolicyOut)
async def update_policy(
    policy_id: uuid.UUID,
    body: PolicyUpdate,
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> PolicyOut:
    policy = await policy_store.update(db, policy_id, body.field, body.value, admin)
    return PolicyOut.model_validate(policy)


# ── Retention scan & flags ───────────────────────────────────────────


@router.post("/retention/scan", response_model=ScanResult)
async def run_retention_scan(
    body: ScanRequest | None = Body(default=None),
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> ScanResult:
    """Run the retention check now. Returns {totalFlagged, ...}."""
    data_types = body.data_types if body is not None else None
    return await retention_scanner.run_scan(db, admin, data_types=data_types)


@router.get("/flags", response_model=list[FlagOut])
async def list_flags(
    scope: Literal["pending", "all"] = Query(default="pending"),
    limit: int = Query(default=200, ge=1, le=1000),
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> list[FlagOut]:
    if scope == "pending":
        flags = await flag_review.list_pending(db, limit=limit)
    else:
        flags = await flag_review.list_all(db, limit=limit)
    return [FlagOut.model_validate(f) for f in flags]


@router.post("/flags/{flag_id}/review", response_model=FlagOut)
async def review_flag(
    flag_id: uuid.UUID,
    body: FlagReview,
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> FlagOut:
    flag = await flag_review.review(db, flag_id, body.decision, admin, notes=body.notes)
    return FlagOut.model_validate(flag)


@router.get("/stats", response_model=RetentionStats)
async def retention_stats(
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> RetentionStats:
    return await stats_aggregator.compute(db)


# ── Deletion requests ────────────────────────────────────────────────


@router.post(
    "/deletion-requests",
    response_model=DeletionRequestOut,
    status_code=status.HTTP_201_CREATED,
)
async def submit_deletion_request(
    body: DeletionRequestCreate,
    db: AsyncSession = Depends(get_session),
    actor: Actor | None = Depends(current_actor),
) -> DeletionRequestOut:
    request = await deletion_workflow.submit(db, actor, body.request_type, body.reason)
    return DeletionRequestOut.model_validate(request)


@router.get("/deletion-requests", response_model=list[DeletionRequestOut])
async def my_deletion_requests(
    db: AsyncSession = Depends(get_session),
    actor: Actor | None = Depends(current_actor),
) -> list[DeletionRequestOut]:
    if actor is None:
        raise AuthenticationError("Not authenticated")
    try:
        user_id = uuid.UUID(actor.id)
    except ValueError:
        return []
    requests = await deletion_workflow.list_for_user(db, user_id)
    return [DeletionRequestOut.model_validate(r) for r in requests]


@router.get("/deletion-requests/pending", response_model=list[DeletionRequestOut])
async def pending_deletion_requests(
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> list[DeletionRequestOut]:
    requests = await deletion_workflow.list_pending(db)
    return [DeletionRequestOut.model_validate(r) for r in requests]


@router.post("/deletion-requests/{request_id}/review", response_model=DeletionRequestOut)
async def review_deletion_request(
    request_id: uuid.UUID,
    body: DeletionRequestReview,
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> DeletionRequestOut:
    request = await deletion_workflow.review(db, request_id, body.decision, admin, body.admin_notes)
    return DeletionRequestOut.model_validate(request)


@router.post("/deletion-requests/{request_id}/complete", response_model=DeletionRequestOut)
async def complete_deletion_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: Actor = Depends(verify_admin),
) -> DeletionRequestOut:
    request = await deletion_workflow.complete(db, request_id, admin)
    return DeletionRequestOut.model_validate(request)


# ── Export ───────────────────────────────────────────────────────────


@router.get("/export")
async def export_my_data(
    format: Literal["structured", "document"] = Query(default="structured"),  # noqa: A002
    partial: bool = Query(default=False, description="Return what could be fetched if a domain fails"),
    actor: Actor | None = Depends(current_actor),
) -> Response:
    """Download every record the caller owns (JSON or PDF)."""
    result = await export_service.export_user(actor, format, allow_partial=partial)
    headers = {
        "Content-Disposition": f'attachment; filename="{result.filename}"',
        "X-Export-Complete": "true" if result.complete else "false",
    }
    return Response(content=result.content, media_type=result.media_type, headers=headers)


# ── Change stream ────────────────────────────────────────────────────


@router.get("/changes")
async def change_stream(
    admin: Actor = Depends(verify_admin),
) -> StreamingResponse:
    """Server-sent events: one message per table change, for dashboard re-fetch.

    Starlette cancels the generator when the client disconnects, which
    closes the listener and releases its pubsub connection.
    """

    async def events() -> AsyncIterator[str]:
        async with contextlib.aclosing(listen_changes()) as changes:
            async for change in changes:
                yield f"data: {json.dumps(change)}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")
