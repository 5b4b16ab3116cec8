"""Authentication and relationship-based authorization for the demo API.

Login is a development stand-in: the user id is kept in a cookie. Every
protected route asks the embedded authorization service whether the
logged-in user holds a relation on the requested object.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from packages.fga import EmbeddedFGA, EmbeddedFGAError, Fact, NotReadyError

security_logger = logging.getLogger("docs.security")

_USER_ID_RE = re.compile(r"^[A-Za-z0-9._%+@-]{1,128}$")
_DOCUMENT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

ADMIN_OBJECT = "app:auth"


class AuthenticatedUser(BaseModel):
    """The logged-in user."""

    user_id: str

    @property
    def subject(self) -> str:
        return f"user:{self.user_id}"


# =============================================================================
# Dependencies
# =============================================================================


def get_fga(request: Request) -> EmbeddedFGA:
    """Return the application's authorization handle."""
    fga: EmbeddedFGA | None = getattr(request.app.state, "fga", None)
    if fga is None or not fga.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization service is not ready",
        )
    return fga


async def get_current_user(request: Request) -> AuthenticatedUser:
    """Read the logged-in user from the session cookie."""
    cookie_name = request.app.state.settings.session_cookie
    user_id = request.cookies.get(cookie_name, "")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="You must be logged in",
        )
    if not _USER_ID_RE.match(user_id):
        security_logger.warning("Rejected malformed session cookie")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session",
        )
    return AuthenticatedUser(user_id=user_id)


def check_relation(fga: EmbeddedFGA, user: AuthenticatedUser, obj: str, relation: str) -> bool:
    """Ask the authorization service; service failures become 503."""
    try:
        return fga.check(Fact(object=obj, relation=relation, user=user.subject))
    except NotReadyError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message) from e
    except EmbeddedFGAError as e:
        security_logger.error("Authorization check failed for %s on %s: %s", user.subject, obj, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization check failed",
        ) from e


def require_relation(relation: str, object_of: Callable[[Request], str]):
    """Dependency factory for relationship-based authorization.

    ``object_of`` maps the request to the object being accessed.
    """

    def check(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),
        fga: EmbeddedFGA = Depends(get_fga),
    ) -> AuthenticatedUser:
        obj = object_of(request)
        if not check_relation(fga, user, obj, relation):
            security_logger.warning("Access denied: %s lacks %s on %s", user.subject, relation, obj)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User {user.user_id} is not allowed {relation} access to {obj}",
            )
        return user

    return check


def document_object(request: Request) -> str:
    return f"document:{validate_document_id(request.path_params['document_id'])}"


def admin_object(request: Request) -> str:
    return ADMIN_OBJECT


# =============================================================================
# Security Headers Middleware
# =============================================================================


async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# =============================================================================
# Input Validation Utilities
# =============================================================================


def validate_user_id(user_id: str) -> str:
    """Validate a user id (an email or handle)."""
    if not _USER_ID_RE.match(user_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid user id format.",
        )
    return user_id


def validate_document_id(document_id: str) -> str:
    """Validate document ID format."""
    if not _DOCUMENT_ID_RE.match(document_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid document id format. Use alphanumeric characters, underscores, or hyphens (max 64 chars).",
        )
    return document_id
