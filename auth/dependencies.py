"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from, in priority order:
  1. the session cookie -- set by POST /auth/login and /auth/register
  2. Authorization: Bearer <token> -- API clients holding the token themselves

Both converge on AuthService.bootstrap(), which returns the Identity snapshot
stored in the token, or None when the token is missing, forged, or expired.

A cookie that fails to bootstrap is stale. try_get_current_identity() flags
it on request.state so the clear_stale_session middleware in api/main.py
deletes it on the way out.

try_get_current_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_identity() and raises HTTP 403 if not admin.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi because this module is part
  of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity, Session
from auth.service import AuthService


def try_get_current_session(request: Request) -> Session | None:
    """Return the caller's Session, or None. Never raises."""
    auth_service: AuthService = request.app.state.auth_service
    cookie_name: str = request.app.state.settings.session_cookie_name

    cookie = request.cookies.get(cookie_name)
    token = cookie
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    session = auth_service.bootstrap(token)
    if session is None and cookie:
        request.state.session_stale = True
    return session


def try_get_current_identity(request: Request) -> Identity | None:
    session = try_get_current_session(request)
    return session.identity if session else None


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_current_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity


def require_admin(request: Request) -> Identity:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    identity = get_current_identity(request)
    if not identity.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return identity
