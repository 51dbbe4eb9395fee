"""Tests for DataExportService and the PDF rendering."""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from caretrack.compliance.domains import DomainRegistry, ExportColumn, TableAdapter, _text
from caretrack.compliance.export import (
    DataExportService,
    DomainExport,
    ExportFormat,
    ExportResult,
)
from caretrack.compliance.rendering import FooterCanvas, render_document, table_rows
from caretrack.errors import (
    AuthenticationError,
    AuthorizationError,
    ExportIncompleteError,
    ValidationError,
)
from caretrack.models.enums import ActorRole
from caretrack.models.profile import Profile
from caretrack.models.tracking import GlucoseReading, MealLog
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

USER_ID = uuid.uuid4()
PATIENT = Actor(id=str(USER_ID), role=ActorRole.PATIENT)


# ── Helpers ──────────────────────────────────────────────────────────


class FakeAdapter(TableAdapter):
    """Adapter serving canned rows instead of querying."""

    def __init__(self, name, model, export_key, rows=None, error=None, delay=0.0, single=False):
        super().__init__(
            name, model, "patient_id",
            export_key=export_key,
            title=name.replace("_", " ").title(),
            columns=[ExportColumn("Value", _text("value")), ExportColumn("Notes", _text("notes"))],
            single=single,
        )
        self.rows = rows or []
        self.error = error
        self.delay = delay
        self.sessions: list[object] = []

    async def fetch_owned_by(self, db, user_id):
        self.sessions.append(db)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.rows)


def _registry(*adapters):
    registry = DomainRegistry()
    for adapter in adapters:
        registry.register(adapter)
    return registry


def _session_factory():
    opened: list[object] = []

    @contextlib.asynccontextmanager
    async def factory():
        session = object()
        opened.append(session)
        yield session

    factory.opened = opened
    return factory


def _glucose_rows(n):
    start = datetime(2026, 1, 1, tzinfo=UTC)
    return [
        {"id": str(uuid.uuid4()), "value": 100 + i, "notes": "", "created_at": (start + timedelta(days=i)).isoformat()}
        for i in range(n)
    ]


def _service(*adapters, factory=None):
    return DataExportService(session_factory=factory or _session_factory(), registry=_registry(*adapters))


# ── export_user ──────────────────────────────────────────────────────


class TestStructuredExport:
    @pytest.mark.asyncio
    async def test_three_records_and_empty_domain(self):
        """Every domain appears, including empty ones."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(3))
        meals = FakeAdapter("meal_logs", MealLog, "mealLogs")
        factory = _session_factory()

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            result = await _service(glucose, meals, factory=factory).export_user(PATIENT, "structured")

        payload = json.loads(result.content)
        assert payload["userId"] == str(USER_ID)
        assert payload["complete"] is True
        assert len(payload["glucoseReadings"]) == 3
        assert payload["mealLogs"] == []
        assert "failedDomains" not in payload
        assert result.media_type == "application/json"
        assert result.filename == f"health-records-{result.export_date.date().isoformat()}.json"

        # one session per domain
        assert len(factory.opened) == 2
        assert glucose.sessions[0] is not meals.sessions[0]

        event = mock_emit.call_args.args[0]
        assert event.action == AuditAction.EXPORT_USER_DATA
        assert event.data["record_counts"] == {"glucose_readings": 3, "meal_logs": 0}

    @pytest.mark.asyncio
    async def test_arrays_are_not_clipped(self):
        """Structured exports keep every record."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(120))
        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            result = await _service(glucose).export_user(PATIENT)
        assert len(json.loads(result.content)["glucoseReadings"]) == 120

    @pytest.mark.asyncio
    async def test_unauthenticated_fetches_nothing(self):
        """No identity means no domain is read."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(1))
        factory = _session_factory()

        with pytest.raises(AuthenticationError):
            await _service(glucose, factory=factory).export_user(None)

        assert factory.opened == []
        assert glucose.sessions == []

    @pytest.mark.asyncio
    async def test_patient_cannot_export_someone_else(self):
        """Patients can only export their own data."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings")
        with pytest.raises(AuthorizationError):
            await _service(glucose).export_user(PATIENT, user_id=uuid.uuid4())
        assert glucose.sessions == []

    @pytest.mark.asyncio
    async def test_admin_exports_for_user(self):
        """Admins can export any user's data."""
        admin = Actor(id="admin", role=ActorRole.ADMIN)
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(2))
        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            result = await _service(glucose).export_user(admin, user_id=USER_ID)
        assert result.user_id == USER_ID

    @pytest.mark.asyncio
    async def test_unknown_format(self):
        """An unknown format is rejected."""
        with pytest.raises(ValidationError):
            await _service().export_user(PATIENT, "csv")


class TestIncompleteExport:
    @pytest.mark.asyncio
    async def test_failed_domain_aborts_by_default(self):
        """A failed domain aborts the export."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(2))
        meals = FakeAdapter("meal_logs", MealLog, "mealLogs", error=RuntimeError("statement timeout"))

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock) as mock_emit:
            with pytest.raises(ExportIncompleteError) as exc_info:
                await _service(glucose, meals).export_user(PATIENT)

        assert exc_info.value.failed_domains == ["meal_logs"]
        assert "statement timeout" in exc_info.value.message
        mock_emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_marks_failed_domains(self):
        """Partial mode nulls failed domains and lists them."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(2))
        meals = FakeAdapter("meal_logs", MealLog, "mealLogs", error=RuntimeError("statement timeout"))

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            result = await _service(glucose, meals).export_user(PATIENT, allow_partial=True)

        assert result.complete is False
        payload = json.loads(result.content)
        assert payload["complete"] is False
        assert payload["mealLogs"] is None
        assert payload["failedDomains"] == ["meal_logs"]
        assert len(payload["glucoseReadings"]) == 2

    @pytest.mark.asyncio
    async def test_partial_with_every_domain_failing(self):
        """Partial mode still fails when nothing could be read."""
        meals = FakeAdapter("meal_logs", MealLog, "mealLogs", error=RuntimeError("down"))
        with pytest.raises(ExportIncompleteError):
            await _service(meals).export_user(PATIENT, allow_partial=True)

    @pytest.mark.asyncio
    async def test_timeout_cancels_and_reports(self):
        """A timeout cancels pending fetches and aborts."""
        fast = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(1))
        slow = FakeAdapter("meal_logs", MealLog, "mealLogs", delay=5.0)

        with pytest.raises(ExportIncompleteError) as exc_info:
            await _service(fast, slow).export_user(PATIENT, timeout=0.05)

        assert exc_info.value.failed_domains == ["meal_logs"]


# ── Document rendering ───────────────────────────────────────────────


def _result(*domains):
    return ExportResult(
        user_id=USER_ID,
        export_date=datetime(2026, 3, 1, tzinfo=UTC),
        format=ExportFormat.DOCUMENT,
        domains=list(domains),
    )


class TestDocument:
    @pytest.mark.asyncio
    async def test_document_export_is_pdf(self):
        """The document format produces a PDF."""
        glucose = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings", _glucose_rows(3))
        meals = FakeAdapter("meal_logs", MealLog, "mealLogs")

        with patch("caretrack.compliance.audit.emit", new_callable=AsyncMock):
            result = await _service(glucose, meals).export_user(PATIENT, "document")

        assert result.content.startswith(b"%PDF")
        assert result.media_type == "application/pdf"
        assert result.filename.endswith(".pdf")

    def test_table_rows_capped(self):
        """Document tables preview at most 50 rows."""
        adapter = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings")
        rows = table_rows(DomainExport(adapter, rows=_glucose_rows(120)), preview_rows=50)
        assert rows[0] == ["Value", "Notes"]
        assert len(rows) == 51

    def test_table_rows_empty_domain(self):
        """An empty domain renders a placeholder row."""
        adapter = FakeAdapter("meal_logs", MealLog, "mealLogs")
        assert table_rows(DomainExport(adapter), preview_rows=50) == []

    def test_single_row_domain_is_field_value(self):
        """Single-row domains render as field/value pairs."""
        adapter = FakeAdapter("profiles", Profile, "profile", single=True)
        rows = table_rows(DomainExport(adapter, rows=[{"value": "x", "notes": ""}]), preview_rows=50)
        assert rows == [["Field", "Value"], ["Value", "x"], ["Notes", ""]]

    def test_long_export_paginates(self):
        """Long exports span pages with numbered footers."""
        adapter = FakeAdapter("glucose_readings", GlucoseReading, "glucoseReadings")
        result = _result(DomainExport(adapter, rows=_glucose_rows(200)))

        with patch.object(FooterCanvas, "drawCentredString") as mock_draw:
            content = render_document(result, preview_rows=200)

        assert content.startswith(b"%PDF")
        footers = [c.args[2] for c in mock_draw.call_args_list]
        total = len(footers)
        assert total >= 2
        assert footers[0] == f"Page 1 of {total} - GDPR Compliant Health Records Export"
        assert footers[-1].startswith(f"Page {total} of {total}")

    def test_incomplete_document_renders(self):
        """An incomplete export still renders a document."""
        adapter = FakeAdapter("meal_logs", MealLog, "mealLogs")
        content = render_document(_result(DomainExport(adapter, error="timeout")))
        assert content.startswith(b"%PDF")


def test_structured_lists_failed_domains():
    """The structured artifact names missing domains."""
    adapter = FakeAdapter("meal_logs", MealLog, "mealLogs")
    result = _result(DomainExport(adapter, error="boom"))
    data = result.structured()
    assert data["failedDomains"] == ["meal_logs"]
    assert data["mealLogs"] is None
