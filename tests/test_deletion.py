"""Tests for DeletionRequestWorkflow — submit, review, complete, purge hook."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from caretrack.compliance.deletion import DeletionRequestWorkflow, purge_health_data
from caretrack.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from caretrack.models.deletion import DeletionRequest
from caretrack.models.enums import ActorRole, DeletionRequestType
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

ADMIN = Actor(id="admin", role=ActorRole.ADMIN)


# ── Helpers ──────────────────────────────────────────────────────────


def _patient():
    return Actor(id=str(uuid.uuid4()), role=ActorRole.PATIENT)


def _make_db(locked=None):
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    db.begin_nested = MagicMock(return_value=savepoint)
    lookup = MagicMock()
    lookup.scalar_one_or_none.return_value = locked
    db.execute = AsyncMock(return_value=lookup)
    return db


def _request(status="pending", request_type="data"):
    return DeletionRequest(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        request_type=request_type,
        status=status,
        requested_at=datetime.now(UTC),
    )


# ── submit ───────────────────────────────────────────────────────────


class TestSubmit:
    @pytest.mark.asyncio
    async def test_creates_pending_request(self):
        """Submitting creates a pending request and audits it."""
        actor = _patient()
        db = _make_db()

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            request = await DeletionRequestWorkflow().submit(db, actor, "account", "moving abroad")

        assert request.status == "pending"
        assert request.request_type == "account"
        assert request.user_id == uuid.UUID(actor.id)
        assert request.reason == "moving abroad"
        db.add.assert_called_once_with(request)

        event = mock_emit.call_args.args[0]
        assert event.action == AuditAction.REQUEST_ACCOUNT_DELETION
        assert event.target_id == actor.id
        assert event.data == {"reason": "moving abroad", "request_id": str(request.id)}

    @pytest.mark.asyncio
    async def test_data_request_action(self):
        """A data request is audited with its own action."""
        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            await DeletionRequestWorkflow().submit(_make_db(), _patient(), DeletionRequestType.DATA)

        assert mock_emit.call_args.args[0].action == AuditAction.REQUEST_DATA_DELETION

    @pytest.mark.asyncio
    async def test_second_pending_request_conflicts(self):
        """A second pending request for a user is a conflict."""
        db = _make_db()
        db.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("uq_deletion_requests_pending_user")))

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            with pytest.raises(ConflictError):
                await DeletionRequestWorkflow().submit(db, _patient(), "data")

        mock_emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure(self):
        """Database errors surface as StoreError."""
        db = _make_db()
        db.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("connection lost")))

        with pytest.raises(StoreError, match="connection lost"):
            await DeletionRequestWorkflow().submit(db, _patient(), "data")

    @pytest.mark.asyncio
    async def test_requires_identity(self):
        """Submitting requires a caller identity."""
        db = _make_db()
        with pytest.raises(AuthenticationError):
            await DeletionRequestWorkflow().submit(db, None, "data")
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_type(self):
        """Only account and data requests are accepted."""
        with pytest.raises(ValidationError):
            await DeletionRequestWorkflow().submit(_make_db(), _patient(), "everything")

    @pytest.mark.asyncio
    async def test_non_uuid_identity(self):
        """A caller id that is not a UUID is rejected."""
        with pytest.raises(ValidationError):
            await DeletionRequestWorkflow().submit(_make_db(), Actor(id="bob"), "data")


# ── review / complete ────────────────────────────────────────────────


class TestReview:
    @pytest.mark.asyncio
    async def test_approve_without_handler_stays_approved(self):
        """Approval without a purge handler leaves the request approved."""
        request = _request()
        db = _make_db(request)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            reviewed = await DeletionRequestWorkflow().review(db, request.id, "approved", ADMIN, "ok")

        assert reviewed.status == "approved"
        assert reviewed.admin_notes == "ok"
        assert reviewed.reviewed_by == "admin"
        assert reviewed.reviewed_at is not None
        assert reviewed.completed_at is None
        event = mock_emit.call_args.args[0]
        assert event.action == AuditAction.REVIEW_DELETION_REQUEST
        assert event.data["purged"] is False

    @pytest.mark.asyncio
    async def test_approve_runs_purge_handler(self):
        """Approval runs the registered purge handler and completes."""
        request = _request(request_type="data")
        db = _make_db(request)
        handler = AsyncMock()
        handler.__name__ = "purge"
        workflow = DeletionRequestWorkflow()
        workflow.register_purge_handler(DeletionRequestType.DATA, handler)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            reviewed = await workflow.review(db, request.id, "approved", ADMIN)

        handler.assert_awaited_once_with(db, request)
        assert reviewed.status == "completed"
        assert reviewed.completed_at is not None

    @pytest.mark.asyncio
    async def test_reject_skips_handler(self):
        """Rejection never runs the purge handler."""
        request = _request(request_type="data")
        handler = AsyncMock()
        handler.__name__ = "purge"
        workflow = DeletionRequestWorkflow()
        workflow.register_purge_handler(DeletionRequestType.DATA, handler)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            reviewed = await workflow.review(_make_db(request), request.id, "rejected", ADMIN)

        assert reviewed.status == "rejected"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_reviewed_conflicts(self):
        """Only pending requests can be reviewed."""
        request = _request(status="rejected")
        with pytest.raises(ConflictError):
            await DeletionRequestWorkflow().review(_make_db(request), request.id, "approved", ADMIN)
        assert request.status == "rejected"

    @pytest.mark.asyncio
    async def test_missing_request(self):
        """Reviewing an unknown request raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await DeletionRequestWorkflow().review(_make_db(None), uuid.uuid4(), "approved", ADMIN)

    @pytest.mark.asyncio
    async def test_invalid_decision(self):
        """Only approved or rejected are valid decisions."""
        with pytest.raises(ValidationError):
            await DeletionRequestWorkflow().review(_make_db(_request()), uuid.uuid4(), "completed", ADMIN)

    @pytest.mark.asyncio
    async def test_requires_admin(self):
        """Reviewing is admin only."""
        with pytest.raises(AuthorizationError):
            await DeletionRequestWorkflow().review(_make_db(_request()), uuid.uuid4(), "approved", _patient())
        with pytest.raises(AuthenticationError):
            await DeletionRequestWorkflow().review(_make_db(_request()), uuid.uuid4(), "approved", None)


class TestComplete:
    @pytest.mark.asyncio
    async def test_approved_to_completed(self):
        """An approved request can be completed."""
        request = _request(status="approved")

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            done = await DeletionRequestWorkflow().complete(_make_db(request), request.id, ADMIN)

        assert done.status == "completed"
        assert done.completed_at is not None
        assert mock_emit.call_args.args[0].action == AuditAction.COMPLETE_DELETION_REQUEST

    @pytest.mark.asyncio
    async def test_pending_cannot_complete(self):
        """A pending request cannot be completed."""
        request = _request(status="pending")
        with pytest.raises(ConflictError):
            await DeletionRequestWorkflow().complete(_make_db(request), request.id, ADMIN)


class TestPurgeHealthData:
    @pytest.mark.asyncio
    async def test_skips_profile_and_non_erasable(self):
        """The data purge keeps the profile and the audit trail."""
        def adapter(name, erasable=True):
            a = MagicMock()
            a.name = name
            a.erasable = erasable
            a.delete_owned_by = AsyncMock(return_value=2)
            return a

        profile = adapter("profiles")
        glucose = adapter("glucose_readings")
        audit = adapter("audit_logs", erasable=False)
        request = _request()
        db = _make_db()

        with patch("caretrack.compliance.deletion.domain_registry", [profile, glucose, audit]):
            await purge_health_data(db, request)

        glucose.delete_owned_by.assert_awaited_once_with(db, request.user_id)
        profile.delete_owned_by.assert_not_awaited()
        audit.delete_owned_by.assert_not_awaited()
