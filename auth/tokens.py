"""
auth/tokens.py -- Password hashing and session tokens.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). bcrypt is salted per
       call, so hashing the same password twice yields different digests, and
       its cost factor (BCRYPT_ROUNDS) makes guessing expensive. checkpw
       compares in constant time. The dummy digest lets the facade run a full
       verify for unknown emails, so response time does not reveal whether an
       account exists [C1].

  Sessions: python-jose with HS256. The token carries a snapshot of the
       identity (id, email, name, role) plus iat/exp. Expiry is checked against
       the injected clock rather than the library's wall clock so the lifetime
       rule lives in one place and tests can simulate elapsed time. Any decode
       failure returns None -- callers treat that as "no session".

  SECRET_KEY: sourced from core.config.get_settings() by the callers that
       construct SessionIssuer. Never logged.

Layer rule: no imports from api/, catalog/, or cache/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Identity, Role, Session
from core.clock import Clock, utcnow

logger = logging.getLogger("shelfguard.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class PasswordHasher:
    """bcrypt wrapper with a configurable work factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("s3cret!")
        hasher.verify("s3cret!", digest)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash: bytes | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt digest of plain. Callers validate length first (<= 72 bytes)."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, digest: str) -> bool:
        """Return True if plain matches digest. Malformed digests and oversize input verify as False."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plain: str) -> bool:
        """Spend one verify's worth of work against a throwaway digest [C1].

        Always returns False. The digest is built on first use with the same
        work factor as real digests so the timing matches.
        """
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"shelfguard_timing_dummy", bcrypt.gensalt(rounds=self.rounds))
        try:
            bcrypt.checkpw(plain.encode("utf-8"), self._dummy_hash)
        except ValueError:
            pass
        return False


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionIssuer:
    """Mints and validates fixed-lifetime session tokens.

    There is no refresh: a session issued at T is invalid from
    T + lifetime onwards, whatever the caller does in between.
    """

    def __init__(self, secret_key: str, lifetime_seconds: int = 24 * 60 * 60, clock: Clock = utcnow) -> None:
        self._secret_key = secret_key
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self._clock = clock

    def issue(self, identity: Identity) -> Session:
        # JWT timestamps are whole seconds; truncate so the Session returned here
        # equals the one bootstrap() rebuilds from the token.
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self.lifetime
        payload = {
            "sub": identity.id,
            "email": identity.email,
            "name": identity.name,
            "role": identity.role.value,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return Session(identity=identity, issued_at=issued_at, expires_at=expires_at, token=token)

    def bootstrap(self, blob: str | None) -> Session | None:
        """Rebuild a Session from a persisted token.

        Returns None when the blob is missing, unparseable, signed with another
        key, missing claims, or expired (now >= expires_at). Clearing the stale
        persisted copy is the caller's job -- this method has no side effects.
        """
        if not blob:
            return None
        try:
            payload = jwt.decode(blob, self._secret_key, algorithms=[_ALGORITHM], options={"verify_exp": False})
            identity = Identity(
                id=payload["sub"],
                email=payload["email"],
                name=payload["name"],
                role=Role(payload["role"]),
            )
            issued_at = datetime.fromtimestamp(payload["iat"], tz=timezone.utc)
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        except (JWTError, KeyError, ValueError, TypeError):
            logger.info("Discarding unreadable session token")
            return None
        if self._clock() >= expires_at:
            logger.info("Discarding expired session for %s", identity.email)
            return None
        return Session(identity=identity, issued_at=issued_at, expires_at=expires_at, token=blob)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, session: Session, cookie_name: str, secure: bool) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    max_age: the full session lifetime. Only freshly issued sessions are
    written, so cookie and token expire together.
    """
    lifetime = int((session.expires_at - session.issued_at).total_seconds())
    response.set_cookie(
        cookie_name,
        value=session.token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max(lifetime, 0),
    )
