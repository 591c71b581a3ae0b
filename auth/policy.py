"""
auth/policy.py -- Authorization rules for content records and roles.

Predicates over (identity or None, owner_id). They take the owner id rather
than a content record so auth/ stays independent of catalog/.

  create        authenticated identity required
  read / list   admin or anonymous: everything; user: own records only
  update/delete admin, or the record's owner
  role change   admin only

Existence is the caller's first check: a missing record is NotFoundError,
reported before (and distinctly from) a permission denial.

The "you cannot change your own role" rule is a UI guard only:
role_control_enabled() tells a UI whether to offer the control, but
authorize_role_change() does not re-check it. The last-admin guard is
enforced only when the caller opts in with enforce_last_admin_guard.
"""

from __future__ import annotations

from auth.models import Identity, Role
from core.errors import PermissionDeniedError, ValidationError


def require_authenticated(identity: Identity | None) -> Identity:
    if identity is None:
        raise PermissionDeniedError("You must be signed in to do that.")
    return identity


def visible_owner(identity: Identity | None) -> str | None:
    """Return the owner id a listing is restricted to, or None for all records."""
    if identity is None or identity.is_admin:
        return None
    return identity.id


def can_modify(identity: Identity | None, owner_id: str) -> bool:
    if identity is None:
        return False
    return identity.is_admin or identity.id == owner_id


def authorize_modify(identity: Identity | None, owner_id: str) -> Identity:
    identity = require_authenticated(identity)
    if not can_modify(identity, owner_id):
        raise PermissionDeniedError("Only the owner or an admin can change this item.")
    return identity


def require_admin(identity: Identity | None) -> Identity:
    identity = require_authenticated(identity)
    if not identity.is_admin:
        raise PermissionDeniedError("Admin access required.")
    return identity


def parse_role(value: str | Role) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise ValidationError("Role must be 'user' or 'admin'.") from exc


def role_control_enabled(caller: Identity | None, target_id: str) -> bool:
    """Whether a UI should offer a role selector for target_id. Never for the caller's own row."""
    return caller is not None and caller.is_admin and caller.id != target_id


def authorize_role_change(
    caller: Identity | None,
    current_role: Role,
    new_role: Role,
    admin_count: int,
    enforce_last_admin_guard: bool = False,
) -> Identity:
    caller = require_admin(caller)
    demoting_admin = current_role == Role.admin and new_role != Role.admin
    if enforce_last_admin_guard and demoting_admin and admin_count <= 1:
        raise PermissionDeniedError("Cannot remove the last admin.")
    return caller
