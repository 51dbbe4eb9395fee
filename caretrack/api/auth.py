"""Caller identity for the compliance API.

Admin routes use HTTP Basic Auth with the shared ADMIN_WEB_PASSWORD.
Patient routes trust the identity headers set by the auth gateway in
front of the service; a request without them yields no actor, and the
service layer answers with AuthenticationError.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from caretrack.config import settings
from caretrack.models.enums import ActorRole
from caretrack.schemas.compliance import Actor

security = HTTPBasic()

# Roles a gateway header may claim; admin rights only come from Basic Auth
_HEADER_ROLES: frozenset[ActorRole] = frozenset({ActorRole.PATIENT, ActorRole.CLINICIAN})


async def verify_admin(
    credentials: HTTPBasicCredentials = Depends(security),  # noqa: B008
) -> Actor:
    """FastAPI dependency — verify HTTP Basic credentials.

    Returns an admin Actor named after the username, raises 401 on failure.
    """
    expected = settings.security.admin_web_password
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ADMIN_WEB_PASSWORD not configured",
        )

    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"),
        expected.encode("utf-8"),
    )
    if not password_ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return Actor(id=credentials.username, role=ActorRole.ADMIN)


async def current_actor(request: Request) -> Actor | None:
    """FastAPI dependency — the gateway-authenticated user, if any."""
    user_id = request.headers.get(settings.security.identity_header, "").strip()
    if not user_id:
        return None

    role_value = request.headers.get(settings.security.role_header, ActorRole.PATIENT.value)
    try:
        role = ActorRole(role_value.strip().lower())
    except ValueError:
        role = ActorRole.PATIENT
    if role not in _HEADER_ROLES:
        role = ActorRole.PATIENT
    return Actor(id=user_id, role=role)
