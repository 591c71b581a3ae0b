"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the facade and
routes do the work.

Layer rule: no imports from api/, catalog/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


@dataclass(frozen=True)
class Identity:
    """A verified (email, role) pair, the result of successful authentication.

    Frozen: the copy held by a session is a read-only snapshot taken at login
    or bootstrap time. A role change in the store is not visible here until
    the next login.
    """

    id: str
    email: str
    name: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin


@dataclass
class CredentialRecord:
    """One row of the credential store.

    email is the normalized (sanitized, lower-cased) address and is unique.
    password_hash is a bcrypt digest; the plaintext is never stored.
    """

    email: str
    password_hash: str
    name: str
    role: Role = Role.user
    id: str | None = None
    created_at: str | None = None  # ISO 8601, set by store on insert

    def to_identity(self) -> Identity:
        return Identity(id=self.id, email=self.email, name=self.name, role=self.role)


@dataclass(frozen=True)
class Session:
    """A time-bounded proof that an Identity was authenticated.

    token is the signed, opaque blob persisted client-side. It is overwritten
    wholesale on every login and removed on logout.
    """

    identity: Identity
    issued_at: datetime
    expires_at: datetime
    token: str

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class ThrottleEntry:
    failure_count: int = 0
    last_failure_at: datetime | None = None


@dataclass(frozen=True)
class Decision:
    """Result of a throttle check.

    wait_minutes is set only when not allowed. attempt is set by
    check_and_reserve: the failure count this attempt was charged as.
    """

    allowed: bool
    wait_minutes: int | None = None
    attempt: int | None = None
