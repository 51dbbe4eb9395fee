"""Personal data export — everything a user owns, in one artifact.

Every exportable domain is fetched in parallel, each on its own session
(an AsyncSession cannot be shared between concurrent tasks). The whole
fan-out runs under one timeout; a TaskGroup cancels sibling fetches as
soon as one fails.

Two contracts:
- default: any failed, cancelled or timed-out fetch aborts the export
  with ExportIncompleteError.
- ``allow_partial=True``: failed domains are reported per domain and the
  result is marked incomplete. It is never reported as complete.

Usage:
    result = await export_service.export_user(actor, "structured")
    response = Response(result.content, media_type=result.media_type)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from caretrack.compliance.audit import audit_logger
from caretrack.compliance.domains import DomainRegistry, TableAdapter, domain_registry
from caretrack.config import settings
from caretrack.errors import (
    AuthenticationError,
    AuthorizationError,
    ExportIncompleteError,
    ValidationError,
)
from caretrack.schemas.compliance import Actor
from caretrack.schemas.events import AuditAction

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Any]  # async context manager yielding an AsyncSession


class ExportFormat(str, Enum):
    STRUCTURED = "structured"
    DOCUMENT = "document"


_MEDIA_TYPES: dict[ExportFormat, tuple[str, str]] = {
    ExportFormat.STRUCTURED: ("application/json", "json"),
    ExportFormat.DOCUMENT: ("application/pdf", "pdf"),
}


@dataclass
class DomainExport:
    """Rows of one domain, or the reason they could not be fetched."""

    adapter: TableAdapter
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExportResult:
    """A rendered export plus the facts needed to serve it."""

    user_id: uuid.UUID
    export_date: datetime
    format: ExportFormat
    domains: list[DomainExport]
    content: bytes = b""

    @property
    def failed_domains(self) -> list[str]:
        return [d.adapter.name for d in self.domains if not d.ok]

    @property
    def complete(self) -> bool:
        return not self.failed_domains

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self.format][0]

    @property
    def filename(self) -> str:
        return f"health-records-{self.export_date.date().isoformat()}.{_MEDIA_TYPES[self.format][1]}"

    def structured(self) -> dict[str, Any]:
        """Machine-readable document: exportDate, userId and one array per domain.

        Arrays are never clipped. A domain that failed under
        ``allow_partial`` is null and listed in failedDomains.
        """
        data: dict[str, Any] = {
            "exportDate": self.export_date.isoformat(),
            "userId": str(self.user_id),
            "complete": self.complete,
        }
        for domain in self.domains:
            data[domain.adapter.export_key] = domain.rows if domain.ok else None
        if not self.complete:
            data["failedDomains"] = self.failed_domains
        return data


def parse_format(value: str | ExportFormat) -> ExportFormat:
    try:
        return ExportFormat(value)
    except ValueError:
        raise ValidationError("format must be 'structured' or 'document'") from None


class DataExportService:
    """Read-only fan-out over every exportable domain for one user."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        registry: DomainRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry if registry is not None else domain_registry

    def _sessions(self) -> SessionFactory:
        if self._session_factory is None:
            from caretrack.db.engine import async_session_factory

            self._session_factory = async_session_factory
        return self._session_factory

    async def export_user(
        self,
        actor: Actor | None,
        fmt: str | ExportFormat = ExportFormat.STRUCTURED,
        *,
        user_id: uuid.UUID | None = None,
        allow_partial: bool = False,
        timeout: float | None = None,
    ) -> ExportResult:
        """Gather and render all data owned by ``user_id`` (default: the caller).

        Raises:
            AuthenticationError: no caller identity; nothing is fetched.
            AuthorizationError: a non-admin asked for someone else's data.
            ValidationError: unknown format.
            ExportIncompleteError: a fetch failed or the timeout expired
                (default contract), or every domain failed.
        """
        if actor is None:
            raise AuthenticationError("Not authenticated")
        export_format = parse_format(fmt)
        target = user_id or self._caller_id(actor)
        if not actor.is_admin and target != self._caller_id(actor):
            raise AuthorizationError("Only administrators can export another user's data")

        domains = await self.gather(target, allow_partial=allow_partial, timeout=timeout)
        result = ExportResult(
            user_id=target,
            export_date=datetime.now(UTC),
            format=export_format,
            domains=domains,
        )
        if result.domains and all(not d.ok for d in result.domains):
            raise ExportIncompleteError("Every domain fetch failed", result.failed_domains)

        if export_format is ExportFormat.STRUCTURED:
            result.content = json.dumps(result.structured(), indent=2, default=str).encode("utf-8")
        else:
            from caretrack.compliance.rendering import render_document

            result.content = render_document(result, preview_rows=settings.retention.export_preview_rows)

        await audit_logger.record(
            actor,
            AuditAction.EXPORT_USER_DATA,
            "user",
            target,
            {
                "format": export_format.value,
                "complete": result.complete,
                "failed_domains": result.failed_domains,
                "record_counts": {d.adapter.name: len(d.rows) for d in result.domains if d.ok},
            },
            source_module="compliance.export",
        )
        logger.info(
            "Exported data for user=%s format=%s complete=%s",
            target,
            export_format.value,
            result.complete,
        )
        return result

    async def gather(
        self,
        user_id: uuid.UUID,
        *,
        allow_partial: bool = False,
        timeout: float | None = None,
    ) -> list[DomainExport]:
        """Fetch every exportable domain concurrently, in registry order."""
        timeout = timeout if timeout is not None else settings.retention.export_timeout_seconds
        adapters = self._registry.exportable()
        tasks: list[asyncio.Task[DomainExport]] = []

        try:
            async with asyncio.timeout(timeout):
                async with asyncio.TaskGroup() as tg:
                    for adapter in adapters:
                        tasks.append(tg.create_task(self._fetch(adapter, user_id, allow_partial)))
        except TimeoutError as exc:
            pending = [a.name for a, t in zip(adapters, tasks, strict=False) if not t.done() or t.cancelled()]
            logger.error("Export for user=%s timed out after %ss", user_id, timeout)
            raise ExportIncompleteError(f"Export timed out after {timeout}s", pending) from exc
        except ExceptionGroup as eg:
            messages = [str(e) for e in eg.exceptions]
            failed = [e.domain for e in eg.exceptions if isinstance(e, _DomainFetchError)]
            logger.error("Export for user=%s failed: %s", user_id, messages)
            raise ExportIncompleteError(f"Export failed: {'; '.join(messages)}", failed) from eg

        return [t.result() for t in tasks]

    async def _fetch(self, adapter: TableAdapter, user_id: uuid.UUID, allow_partial: bool) -> DomainExport:
        try:
            async with self._sessions()() as db:
                rows = await adapter.fetch_owned_by(db, user_id)
        except Exception as exc:
            if not allow_partial:
                raise _DomainFetchError(adapter.name, exc) from exc
            logger.warning("Export of %s failed for user=%s: %s", adapter.name, user_id, exc)
            return DomainExport(adapter=adapter, error=str(exc))
        return DomainExport(adapter=adapter, rows=rows)

    @staticmethod
    def _caller_id(actor: Actor) -> uuid.UUID:
        try:
            return uuid.UUID(actor.id)
        except ValueError:
            raise ValidationError(f"Caller identity '{actor.id}' is not a user id") from None


class _DomainFetchError(Exception):
    def __init__(self, domain: str, cause: Exception) -> None:
        super().__init__(f"{domain}: {cause}")
        self.domain = domain


# Module-level singleton
export_service = DataExportService()
