"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper (same as catalog/store.py).
CredentialStore is the repository; _row_to_record is the mapper.
Facade and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced by the database. Emails are normalized to lower
  case before they reach the store, so the constraint is case-insensitive in
  effect. Two concurrent registrations for the same address cannot both
  succeed: the loser gets sqlalchemy.exc.IntegrityError, which the facade
  maps to DuplicateEmailError. There is no read-then-write window.

IDs are opaque strings (uuid4 hex), generated here rather than by the DB.

Layer rule: no imports from api/, catalog/, or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import CredentialRecord, Role
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_credentials = Table(
    "credentials",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # normalized, lower case
    Column("password_hash", Text, nullable=False),  # bcrypt digest
    Column("name", String(255), nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.user.value),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite settings every store in the app uses."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for CredentialRecord entities.

    Usage:
        store = CredentialStore()
        record_id = store.create(CredentialRecord(email="a@b.co", password_hash=digest, name="Ann"))
        record = store.get_by_email("a@b.co")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create(self, record: CredentialRecord) -> str:
        """Insert a credential record and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        record_id = uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _credentials.insert().values(
                    id=record_id,
                    email=record.email,
                    password_hash=record.password_hash,
                    name=record.name,
                    role=Role(record.role).value,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return record_id

    def get_by_id(self, record_id: str) -> CredentialRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == record_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_by_email(self, email: str) -> CredentialRecord | None:
        """Exact-match lookup on the normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.email == email)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_all(self) -> list[CredentialRecord]:
        """Return all records ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_credentials.select().order_by(_credentials.c.email)).fetchall()
        return [_row_to_record(r) for r in rows]

    def update_role(self, record_id: str, role: Role) -> bool:
        """Set the role on a record. Returns False if record_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _credentials.update().where(_credentials.c.id == record_id).values(role=Role(role).value)
            )
            conn.commit()
        return result.rowcount > 0

    def count_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_credentials).where(_credentials.c.role == Role.admin.value)
            ).scalar()
        return result or 0

    def has_records(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_credentials)).scalar()
        return (result or 0) > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        role=Role(row.role),
        created_at=row.created_at,
    )
