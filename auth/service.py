"""
auth/service.py -- Auth facade: registration, login, session bootstrap, roles.

Composes the sanitizer, credential store, password hasher, login throttle and
session issuer. The HTTP routes, the CLI and auth.context.AuthSession call
this; nothing else does.

Login pipeline (order matters):
  1. normalize + shape-check the email
  2. throttle reservation -- a locked email is rejected here, before any
     lookup or bcrypt work; otherwise the attempt is charged as a failure
  3. credential lookup by normalized email
  4. bcrypt verify (dummy verify when the email is unknown [C1])
  5. success: reset throttle, issue session
     failure: keep the charge, raise InvalidCredentialsError

With the charge taken before the lookup, no more than max_failures
concurrent attempts per cooldown reach a credential check. A collaborator
fault after the reservation leaves the charge in place.

Every collaborator call goes through core.bounded.bounded_call: it runs on a
worker thread, is awaited sequentially, and is capped by
COLLABORATOR_TIMEOUT_SECONDS. Collaborator faults surface as UnexpectedError.

Registration does not check-then-insert. It inserts and lets the UNIQUE
constraint on credentials.email decide; IntegrityError becomes
DuplicateEmailError.

Layer rule: no imports from api/, catalog/, or cache/.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from auth import policy
from auth.models import CredentialRecord, Identity, Role, Session
from auth.sanitize import normalize_email, sanitize, validate_email, validate_name, validate_password
from auth.store import CredentialStore
from auth.throttle import LoginThrottle, build_throttle
from auth.tokens import PasswordHasher, SessionIssuer
from core.bounded import bounded_call
from core.clock import Clock, utcnow
from core.config import Settings
from core.errors import (
    DuplicateEmailError,
    InvalidCredentialsError,
    NotFoundError,
    PermissionDeniedError,
    ThrottledError,
    ValidationError,
)

logger = logging.getLogger("shelfguard.auth")

_DISTINCT_MESSAGES = {
    "unknown_email": "No account exists for this email.",
    "wrong_password": "Incorrect password.",
}


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        issuer: SessionIssuer,
        throttle: LoginThrottle,
        timeout: float = 5.0,
        distinct_login_errors: bool = False,
        enforce_last_admin_guard: bool = False,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.throttle = throttle
        self.timeout = timeout
        self.distinct_login_errors = distinct_login_errors
        self.enforce_last_admin_guard = enforce_last_admin_guard

    @classmethod
    def from_settings(cls, settings: Settings, store: CredentialStore, clock: Clock = utcnow) -> "AuthService":
        """Wire the facade from Settings. The store is passed in so its lifetime stays with the caller."""
        throttle = build_throttle(
            settings.throttle_backend,
            engine=store.engine,
            max_failures=settings.login_max_failures,
            cooldown_seconds=settings.login_cooldown_seconds,
            clock=clock,
        )
        return cls(
            store=store,
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            issuer=SessionIssuer(settings.secret_key, settings.session_lifetime_seconds, clock=clock),
            throttle=throttle,
            timeout=settings.collaborator_timeout_seconds,
            distinct_login_errors=settings.distinct_login_errors,
            enforce_last_admin_guard=settings.enforce_last_admin_guard,
        )

    async def _call(self, fn, *args: Any) -> Any:
        return await bounded_call(fn, *args, timeout=self.timeout)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, name: str) -> tuple[Identity, Session]:
        """Create a user-role account and sign it in."""
        identity = await self._create_account(email, password, name, Role.user)
        logger.info("Registered %s", identity.email)
        return identity, self.issuer.issue(identity)

    async def create_first_admin(self, email: str, password: str, name: str) -> Identity:
        """Create the initial admin account. Refused once any account exists."""
        if await self._call(self.store.has_records):
            raise PermissionDeniedError("An account already exists. Ask an admin to grant the admin role.")
        identity = await self._create_account(email, password, name, Role.admin)
        logger.info("Created first admin %s", identity.email)
        return identity

    async def _create_account(self, email: str, password: str, name: str, role: Role) -> Identity:
        email = normalize_email(email)
        if not validate_email(email):
            raise ValidationError("Enter a valid email address.")
        if not validate_password(password):
            raise ValidationError("Password must be at least 6 characters and at most 72 bytes.")
        name = sanitize(name)
        if not validate_name(name):
            raise ValidationError("Name must be between 2 and 50 characters.")

        digest = await self._call(self.hasher.hash, password)
        record = CredentialRecord(email=email, password_hash=digest, name=name, role=role)
        record.id = await self._call(self._insert, record)
        return record.to_identity()

    def _insert(self, record: CredentialRecord) -> str:
        try:
            return self.store.create(record)
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc

    # ------------------------------------------------------------------
    # Login / bootstrap
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> tuple[Identity, Session]:
        email = normalize_email(email)
        if not validate_email(email) or not password:
            raise ValidationError("Enter your email and password.")

        decision = await self._call(self.throttle.check_and_reserve, email)
        if not decision.allowed:
            logger.info("Rejected throttled login for %s", email)
            raise ThrottledError(decision.wait_minutes)

        record = await self._call(self.store.get_by_email, email)
        if record is None:
            await self._call(self.hasher.verify_dummy, password)
            self._fail(email, "unknown_email", decision.attempt)
        if not await self._call(self.hasher.verify, password, record.password_hash):
            self._fail(email, "wrong_password", decision.attempt)

        await self._call(self.throttle.record_success, email)
        identity = record.to_identity()
        logger.info("Login succeeded for %s", email)
        return identity, self.issuer.issue(identity)

    def _fail(self, email: str, reason: str, attempt: int | None) -> None:
        logger.info("Login failed for %s (%s, attempt %s)", email, reason, attempt)
        message = _DISTINCT_MESSAGES[reason] if self.distinct_login_errors else None
        raise InvalidCredentialsError(reason, message)

    def bootstrap(self, blob: str | None) -> Session | None:
        """Validate a persisted session blob. None means "no session"."""
        return self.issuer.bootstrap(blob)

    # ------------------------------------------------------------------
    # Admin surface
    # ------------------------------------------------------------------

    async def list_users(self, caller: Identity | None) -> list[CredentialRecord]:
        policy.require_admin(caller)
        return await self._call(self.store.list_all)

    async def set_role(self, caller: Identity | None, target_id: str, role: str | Role) -> CredentialRecord:
        """Change target_id's role. Admin only.

        The caller's own Identity snapshot is not refreshed; a demoted admin
        keeps admin rights until their session is re-issued.
        """
        new_role = policy.parse_role(role)
        policy.require_admin(caller)
        target = await self._call(self.store.get_by_id, target_id)
        if target is None:
            raise NotFoundError("User not found.")
        admin_count = await self._call(self.store.count_admins) if self.enforce_last_admin_guard else 0
        policy.authorize_role_change(
            caller,
            current_role=target.role,
            new_role=new_role,
            admin_count=admin_count,
            enforce_last_admin_guard=self.enforce_last_admin_guard,
        )
        if target.role != new_role:
            if not await self._call(self.store.update_role, target_id, new_role):
                raise NotFoundError("User not found.")
            logger.info(
                "%s changed role of %s from %s to %s",
                caller.email,
                target.email,
                target.role.value,
                new_role.value,
            )
        target.role = new_role
        return target
