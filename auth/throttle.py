"""
auth/throttle.py -- Per-email login throttling.

State machine per normalized email:

    start --failure--> tracking{1}
    tracking{n} --failure, within cooldown--> tracking{n+1}
    tracking{n} --failure, cooldown elapsed--> tracking{1}
    tracking{n} --success--> start
    tracking{n >= max_failures}, within cooldown == locked

The facade calls check_and_reserve() before any credential lookup. In one
atomic step it either rejects a locked email, with the remaining wait in whole
minutes (rounded up, never 0), or charges the attempt as a failure up front.
Concurrent attempts for one email therefore cannot all slip past the check:
at most max_failures of them per cooldown window reach bcrypt. A successful
login clears the charge through record_success().

"Cooldown elapsed" is evaluated lazily against last_failure_at. Entries past
their cooldown carry no state and are evicted on the next call.

Two interchangeable backends behind LoginThrottle:
  MemoryLoginThrottle   -- process-local ordered dict, guarded by a lock. Lost
                           on restart and not shared between server processes.
  DatabaseLoginThrottle -- login_throttle table on the credential store's
                           engine. Shared by every process using the database.

Every read-modify-write is atomic: the memory backend holds its lock across
the whole transition, the database backend does the transition in a single
conditional UPDATE statement.

Layer rule: no imports from api/, catalog/, or cache/.
"""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, case, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Decision, ThrottleEntry
from core.clock import Clock, utcnow

logger = logging.getLogger("shelfguard.throttle")

DEFAULT_MAX_FAILURES = 5
DEFAULT_COOLDOWN_SECONDS = 15 * 60


class LoginThrottle(ABC):
    """Interface shared by the throttle backends."""

    def __init__(
        self,
        max_failures: int = DEFAULT_MAX_FAILURES,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        self.max_failures = max_failures
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock

    @abstractmethod
    def get_entry(self, email: str) -> ThrottleEntry | None:
        """Return the raw entry for email, or None if there is none."""

    @abstractmethod
    def check_and_reserve(self, email: str) -> Decision:
        """Reject a locked email, or count this attempt as a failure and allow it."""

    @abstractmethod
    def record_failure(self, email: str) -> ThrottleEntry:
        """Count one failed attempt and return the updated entry."""

    @abstractmethod
    def record_success(self, email: str) -> None:
        """Forget all failures for email."""

    def check_allowed(self, email: str) -> Decision:
        entry = self.get_entry(email)
        return self._decide(entry, self._clock())

    def _decide(self, entry: ThrottleEntry | None, now: datetime) -> Decision:
        if entry is None or entry.last_failure_at is None:
            return Decision(allowed=True)
        elapsed = now - entry.last_failure_at
        if elapsed >= self.cooldown or entry.failure_count < self.max_failures:
            return Decision(allowed=True)
        remaining = (self.cooldown - elapsed).total_seconds()
        return Decision(allowed=False, wait_minutes=max(1, math.ceil(remaining / 60)))

    def _next_entry(self, entry: ThrottleEntry | None, now: datetime) -> ThrottleEntry:
        if entry is None or entry.last_failure_at is None or now - entry.last_failure_at >= self.cooldown:
            return ThrottleEntry(failure_count=1, last_failure_at=now)
        return ThrottleEntry(failure_count=entry.failure_count + 1, last_failure_at=now)

    def _log_failure(self, email: str, entry: ThrottleEntry) -> None:
        if entry.failure_count == self.max_failures:
            logger.warning(
                "Login attempts for %s reached %d; further attempts locked for %ds",
                email,
                entry.failure_count,
                int(self.cooldown.total_seconds()),
            )


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryLoginThrottle(LoginThrottle):
    """Single-process throttle. State lives in a dict and dies with the process.

    The dict is kept in last_failure_at order (every write moves its key to the
    end), so expired entries are always at the front and eviction stops at the
    first live one.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._entries: OrderedDict[str, ThrottleEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_entry(self, email: str) -> ThrottleEntry | None:
        with self._lock:
            entry = self._entries.get(email)
            return ThrottleEntry(entry.failure_count, entry.last_failure_at) if entry else None

    def check_allowed(self, email: str) -> Decision:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            return self._decide(self._entries.get(email), now)

    def check_and_reserve(self, email: str) -> Decision:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            current = self._entries.get(email)
            decision = self._decide(current, now)
            if not decision.allowed:
                return decision
            entry = self._put(email, self._next_entry(current, now))
        self._log_failure(email, entry)
        return Decision(allowed=True, attempt=entry.failure_count)

    def record_failure(self, email: str) -> ThrottleEntry:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            entry = self._put(email, self._next_entry(self._entries.get(email), now))
        self._log_failure(email, entry)
        return ThrottleEntry(entry.failure_count, entry.last_failure_at)

    def record_success(self, email: str) -> None:
        with self._lock:
            self._entries.pop(email, None)

    def _put(self, email: str, entry: ThrottleEntry) -> ThrottleEntry:
        # Caller holds the lock.
        self._entries[email] = entry
        self._entries.move_to_end(email)
        return entry

    def _evict_expired(self, now: datetime) -> None:
        # Caller holds the lock.
        while self._entries:
            email, entry = next(iter(self._entries.items()))
            if now - entry.last_failure_at < self.cooldown:
                break
            del self._entries[email]


# ---------------------------------------------------------------------------
# Shared database backend
# ---------------------------------------------------------------------------

metadata = MetaData()

_throttle = Table(
    "login_throttle",
    metadata,
    Column("email", String(255), primary_key=True),
    Column("failure_count", Integer, nullable=False),
    Column("last_failure_at", Float, nullable=False, index=True),  # POSIX timestamp
)


class DatabaseLoginThrottle(LoginThrottle):
    """Throttle state in a shared table, for deployments with several processes.

    Failures are counted with one conditional UPDATE:
        failure_count = 1 if the cooldown elapsed, else failure_count + 1
    so concurrent failures for the same email cannot lose an increment.
    check_and_reserve() adds "and the email is not locked" to the WHERE
    clause, so the lock check and the charge are the same statement. The
    first failure for an email INSERTs; if a concurrent request inserted
    first, the IntegrityError is absorbed and the UPDATE is retried.
    """

    def __init__(self, engine: Engine, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.engine = engine
        metadata.create_all(self.engine)

    def get_entry(self, email: str) -> ThrottleEntry | None:
        with self.engine.connect() as conn:
            row = conn.execute(_throttle.select().where(_throttle.c.email == email)).fetchone()
        if row is None:
            return None
        return ThrottleEntry(
            failure_count=row.failure_count,
            last_failure_at=datetime.fromtimestamp(row.last_failure_at, tz=timezone.utc),
        )

    def _increment(self, email: str, now: datetime, only_if_unlocked: bool) -> bool:
        """Charge one failure to an existing row. False if no row was updated."""
        cutoff = (now - self.cooldown).timestamp()
        stmt = (
            _throttle.update()
            .where(_throttle.c.email == email)
            .values(
                failure_count=case(
                    (_throttle.c.last_failure_at <= cutoff, 1),
                    else_=_throttle.c.failure_count + 1,
                ),
                last_failure_at=now.timestamp(),
            )
        )
        if only_if_unlocked:
            stmt = stmt.where(
                or_(_throttle.c.last_failure_at <= cutoff, _throttle.c.failure_count < self.max_failures)
            )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def _insert_first(self, email: str, now: datetime) -> bool:
        try:
            with self.engine.begin() as conn:
                conn.execute(_throttle.insert().values(email=email, failure_count=1, last_failure_at=now.timestamp()))
        except IntegrityError:
            # Another request inserted the first failure; count ours with the UPDATE.
            return False
        return True

    def _purge_expired(self, now: datetime) -> None:
        cutoff = (now - self.cooldown).timestamp()
        with self.engine.begin() as conn:
            conn.execute(_throttle.delete().where(_throttle.c.last_failure_at <= cutoff))

    def check_and_reserve(self, email: str) -> Decision:
        now = self._clock()
        self._purge_expired(now)
        for _ in range(3):
            if self._increment(email, now, only_if_unlocked=True):
                break
            current = self.get_entry(email)
            if current is not None:
                decision = self._decide(current, now)
                if not decision.allowed:
                    return decision
                # Unlocked between the UPDATE and the read; try again.
                continue
            if self._insert_first(email, now):
                break
        else:
            # Lost the race on every pass.
            return Decision(allowed=False, wait_minutes=1)
        entry = self.get_entry(email) or ThrottleEntry(failure_count=1, last_failure_at=now)
        self._log_failure(email, entry)
        return Decision(allowed=True, attempt=entry.failure_count)

    def record_failure(self, email: str) -> ThrottleEntry:
        now = self._clock()
        for _ in range(2):
            if self._increment(email, now, only_if_unlocked=False) or self._insert_first(email, now):
                break
        entry = self.get_entry(email) or ThrottleEntry(failure_count=1, last_failure_at=now)
        self._log_failure(email, entry)
        return entry

    def record_success(self, email: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_throttle.delete().where(_throttle.c.email == email))


def build_throttle(backend: str, engine: Engine | None = None, **kwargs) -> LoginThrottle:
    """Return the throttle for THROTTLE_BACKEND ("memory" or "database")."""
    if backend == "database":
        if engine is None:
            raise ValueError("The database throttle backend needs an engine.")
        return DatabaseLoginThrottle(engine, **kwargs)
    return MemoryLoginThrottle(**kwargs)
