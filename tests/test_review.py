"""Tests for FlagReviewWorkflow — single-shot review with erasure cascade."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from caretrack.compliance.review import FlagReviewWorkflow, parse_decision
from caretrack.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from caretrack.models.enums import ActorRole, FlagAction
from caretrack.models.retention import RetentionFlag
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

ADMIN = Actor(id="admin", role=ActorRole.ADMIN)


# ── Helpers ──────────────────────────────────────────────────────────


def _flag(data_type="glucose_readings", action="pending"):
    return RetentionFlag(
        id=uuid.uuid4(),
        data_type=data_type,
        record_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        flagged_at=datetime.now(UTC),
        action_taken=action,
    )


def _make_db(flag):
    db = AsyncMock()
    lookup = MagicMock()
    lookup.scalar_one_or_none.return_value = flag
    db.execute = AsyncMock(return_value=lookup)
    db.flush = AsyncMock()
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    db.begin_nested = MagicMock(return_value=savepoint)
    return db


def _adapter(erasable=True, deleted=1, error=None):
    adapter = MagicMock()
    adapter.erasable = erasable
    adapter.delete_record = AsyncMock(return_value=deleted, side_effect=error)
    return adapter


def _registry(adapter):
    registry = MagicMock()
    registry.for_data_type.return_value = adapter
    return registry


class TestParseDecision:
    def test_valid(self):
        """Accepts the deleted and retained decisions."""
        assert parse_decision("deleted") is FlagAction.DELETED
        assert parse_decision(FlagAction.RETAINED) is FlagAction.RETAINED

    @pytest.mark.parametrize("value", ["pending", "archive", ""])
    def test_invalid(self, value):
        """Rejects pending and unknown decisions."""
        with pytest.raises(ValidationError):
            parse_decision(value)


class TestReview:
    @pytest.mark.asyncio
    async def test_retain_records_decision_only(self):
        """Retaining closes the flag without touching the record."""
        flag = _flag()
        adapter = _adapter()
        db = _make_db(flag)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            reviewed = await FlagReviewWorkflow(_registry(adapter)).review(
                db, flag.id, "retained", ADMIN, notes="still needed"
            )

        assert reviewed.action_taken == "retained"
        assert reviewed.reviewed_by == "admin"
        assert reviewed.reviewed_at is not None
        assert reviewed.notes == "still needed"
        adapter.delete_record.assert_not_awaited()

        event = mock_emit.call_args.args[0]
        assert event.action == AuditAction.REVIEW_RETENTION_FLAG
        assert event.target_id == str(flag.id)
        assert event.data["action"] == "retained"
        assert event.data["notes"] == "still needed"

    @pytest.mark.asyncio
    async def test_delete_erases_record(self):
        """Deleting closes the flag and erases the record."""
        flag = _flag()
        adapter = _adapter()
        db = _make_db(flag)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            await FlagReviewWorkflow(_registry(adapter)).review(db, flag.id, "deleted", ADMIN)

        assert flag.action_taken == "deleted"
        adapter.delete_record.assert_awaited_once_with(db, flag.record_id)
        assert mock_emit.call_args.args[0].data["record_erased"] is True

    @pytest.mark.asyncio
    async def test_delete_on_non_erasable_domain(self):
        """Non-erasable domains only record the decision."""
        flag = _flag("audit_logs")
        adapter = _adapter(erasable=False)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            await FlagReviewWorkflow(_registry(adapter)).review(_make_db(flag), flag.id, "deleted", ADMIN)

        assert flag.action_taken == "deleted"
        adapter.delete_record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_erasure_failure_raises_store_error(self):
        """A failed erasure leaves the flag pending."""
        flag = _flag()
        adapter = _adapter(error=OperationalError("DELETE", {}, Exception("timeout")))
        db = _make_db(flag)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            with pytest.raises(StoreError):
                await FlagReviewWorkflow(_registry(adapter)).review(db, flag.id, "deleted", ADMIN)

        mock_emit.assert_not_awaited()
        # The savepoint saw the exception, so it rolls back
        exit_args = db.begin_nested.return_value.__aexit__.call_args.args
        assert exit_args[0] is OperationalError

    @pytest.mark.asyncio
    async def test_already_reviewed_conflicts(self):
        """A flag can be reviewed once."""
        flag = _flag(action="retained")
        db = _make_db(flag)

        with pytest.raises(ConflictError):
            await FlagReviewWorkflow(_registry(_adapter())).review(db, flag.id, "deleted", ADMIN)

        assert flag.action_taken == "retained"
        db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_flag(self):
        """Reviewing an unknown flag raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await FlagReviewWorkflow(_registry(_adapter())).review(
                _make_db(None), uuid.uuid4(), "retained", ADMIN
            )

    @pytest.mark.asyncio
    async def test_locks_flag_row(self):
        """The flag row is read FOR UPDATE."""
        flag = _flag()
        db = _make_db(flag)

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            await FlagReviewWorkflow(_registry(_adapter())).review(db, flag.id, "retained", ADMIN)

        sql = str(db.execute.call_args_list[0].args[0].compile(dialect=postgresql.dialect()))
        assert sql.endswith("FOR UPDATE")

    @pytest.mark.asyncio
    async def test_delete_without_adapter(self):
        """Deleting a flag of an unregistered type is rejected and stays pending."""
        flag = _flag("sleep_logs")
        with pytest.raises(ValidationError):
            await FlagReviewWorkflow(_registry(None)).review(_make_db(flag), flag.id, "deleted", ADMIN)
        assert flag.action_taken == "pending"

    @pytest.mark.asyncio
    async def test_requires_reviewer(self):
        """Reviewing requires an identity."""
        flag = _flag()
        db = _make_db(flag)
        with pytest.raises(AuthenticationError):
            await FlagReviewWorkflow(_registry(_adapter())).review(db, flag.id, "retained", None)
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_admin(self):
        """Reviewing is admin only."""
        clinician = Actor(id="dr", role=ActorRole.CLINICIAN)
        with pytest.raises(AuthorizationError):
            await FlagReviewWorkflow(_registry(_adapter())).review(
                _make_db(_flag()), uuid.uuid4(), "retained", clinician
            )

    @pytest.mark.asyncio
    async def test_invalid_decision(self):
        """Unknown decisions are rejected."""
        with pytest.raises(ValidationError):
            await FlagReviewWorkflow(_registry(_adapter())).review(
                _make_db(_flag()), uuid.uuid4(), "archive", ADMIN
            )


class TestListPending:
    @pytest.mark.asyncio
    async def test_filters_and_orders(self):
        """Listing filters by state and orders by flag time."""
        db = _make_db(None)
        result = MagicMock()
        result.scalars.return_value.all.return_value = [_flag()]
        db.execute = AsyncMock(return_value=result)

        flags = await FlagReviewWorkflow(_registry(None)).list_pending(db, limit=10)

        assert len(flags) == 1
        sql = str(db.execute.call_args.args[0].compile(dialect=postgresql.dialect()))
        assert "data_retention_flags.action_taken =" in sql
        assert "ORDER BY data_retention_flags.flagged_at DESC" in sql
