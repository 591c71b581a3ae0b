"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST  /api/v1/auth/register          -- create a user account; sets session cookie
  POST  /api/v1/auth/login             -- password login; sets session cookie
  POST  /api/v1/auth/logout            -- clears cookie; always 200
  GET   /api/v1/auth/me                -- current identity (requires auth)
  GET   /api/v1/users                  -- list accounts (admin only)
  PATCH /api/v1/users/{id}/role        -- change an account's role (admin only)

Security:
  [H2] POST /login and /register are rate-limited per IP (slowapi). The
       per-email lockout in auth/throttle.py applies on top of that.
  [C1] AuthService.login() runs a dummy bcrypt verify for unknown emails.
  [M5] Cache-Control: no-store on responses that carry a token.

Domain errors (core.errors.AppError) raised by the services are turned into
the standard error envelope by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    IdentityResponse,
    LoginRequest,
    RegisterRequest,
    RoleUpdate,
    SessionResponse,
    UserResponse,
)
from auth import policy
from auth.dependencies import get_current_identity, require_admin
from auth.models import Identity, Session
from auth.service import AuthService
from auth.tokens import set_session_cookie
from core.config import get_settings

# Auth policy:
# - POST  /auth/register:     public
# - POST  /auth/login:        public
# - POST  /auth/logout:       public -- clearing a cookie needs no prior auth
# - GET   /auth/me:           requires auth (get_current_identity)
# - GET   /users:             requires admin (require_admin)
# - PATCH /users/{id}/role:   requires admin (require_admin)
router = APIRouter()

_LOGIN_LIMIT = get_settings().login_rate_limit


def _session_response(request: Request, session: Session, status_code: int) -> JSONResponse:
    settings = request.app.state.settings
    resp = JSONResponse(
        status_code=status_code,
        content=SessionResponse.from_session(session).model_dump(mode="json"),
    )
    set_session_cookie(resp, session, settings.session_cookie_name, settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_LOGIN_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=SessionResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a user-role account and start a session for it."""
    auth_service: AuthService = request.app.state.auth_service
    _identity, session = await auth_service.register(body.email, body.password, body.name)
    return _session_response(request, session, 201)


@limiter.limit(_LOGIN_LIMIT)  # [H2]
@router.post("/auth/login", response_model=SessionResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    A locked email gets 429 with Retry-After before any credential check.
    """
    auth_service: AuthService = request.app.state.auth_service
    _identity, session = await auth_service.login(body.email, body.password)
    return _session_response(request, session, 200)


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """Clear the session cookie. Idempotent: logging out twice is fine."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(request.app.state.settings.session_cookie_name)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=IdentityResponse)
async def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    """Return the identity snapshot carried by the current session."""
    return IdentityResponse.from_identity(identity)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
async def list_users(request: Request, caller: Identity = Depends(require_admin)) -> list[UserResponse]:
    """List all accounts. role_editable is False on the caller's own row."""
    auth_service: AuthService = request.app.state.auth_service
    records = await auth_service.list_users(caller)
    return [UserResponse.from_record(r, policy.role_control_enabled(caller, r.id)) for r in records]


@router.patch("/users/{user_id}/role", response_model=UserResponse)
async def set_role(
    request: Request,
    user_id: str,
    body: RoleUpdate,
    caller: Identity = Depends(require_admin),
) -> UserResponse:
    """Change an account's role. Admin only.

    The target's existing sessions keep their old role until they log in again.
    """
    auth_service: AuthService = request.app.state.auth_service
    record = await auth_service.set_role(caller, user_id, body.role.value)
    return UserResponse.from_record(record, policy.role_control_enabled(caller, record.id))
