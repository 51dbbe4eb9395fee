"""Typed errors raised by the compliance services.

Every service propagates these to its caller; only the audit writer
swallows its own failures. The HTTP layer maps ``status_code`` onto the
response.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator

from sqlalchemy.exc import SQLAlchemyError


class ComplianceError(Exception):
    """Base class for all compliance engine errors."""

    status_code: int = 500
    kind: str = "compliance_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ComplianceError):
    """A required field is missing or a value is out of range.

    Always raised before any mutation is attempted.
    """

    status_code = 422
    kind = "validation_error"


class ConflictError(ComplianceError):
    """The write would break an at-most-one-pending invariant, or the
    target already left the pending state."""

    status_code = 409
    kind = "conflict"


class NotFoundError(ComplianceError):
    """The referenced flag, request, or policy does not exist."""

    status_code = 404
    kind = "not_found"

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class AuthenticationError(ComplianceError):
    """No caller identity was supplied."""

    status_code = 401
    kind = "authentication_error"


class AuthorizationError(AuthenticationError):
    """The caller is authenticated but lacks the admin role."""

    status_code = 403
    kind = "authorization_error"


class StoreError(ComplianceError):
    """The remote store failed. The driver message is kept verbatim."""

    status_code = 502
    kind = "store_error"


class ExportIncompleteError(StoreError):
    """An export was cancelled, timed out, or lost a domain fetch."""

    kind = "export_incomplete"

    def __init__(self, message: str, failed_domains: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed_domains = failed_domains or []


@contextlib.contextmanager
def store_errors() -> Iterator[None]:
    """Re-raise driver/ORM failures inside the block as StoreError."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc
