"""
catalog/store.py -- SQLAlchemy-backed persistence for catalog items.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. ContentStore is the repository;
_row_to_record is the mapper. Services never touch SQL directly.

Prices are stored as their decimal string ("19.99") rather than a REAL so
they round-trip exactly; SQLite has no native decimal type.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ContentStore()
    item_id = store.create(ContentRecord(name="Lamp", price=Decimal("19.99"), owner_id=uid, owner_email=email))
    items = store.list_items(owner_id=uid)
    store.close()
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.store import make_engine
from catalog.models import ContentRecord
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_items = Table(
    "items",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("price", String(40), nullable=False),  # Decimal as text
    Column("photo_url", Text),
    Column("owner_id", String(32), nullable=False, index=True),
    Column("owner_email", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

# Fields update() accepts. Ownership and timestamps are not among them.
_MUTABLE_FIELDS = {"name", "price", "photo_url"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ContentStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    def create(self, record: ContentRecord) -> str:
        """Insert a new item and return its generated ID."""
        record_id = uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _items.insert().values(
                    id=record_id,
                    name=record.name,
                    price=str(record.price),
                    photo_url=record.photo_url,
                    owner_id=record.owner_id,
                    owner_email=record.owner_email,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return record_id

    def get(self, record_id: str) -> Optional[ContentRecord]:
        """Fetch a single item by ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_items.select().where(_items.c.id == record_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_items(self, owner_id: Optional[str] = None) -> list[ContentRecord]:
        """Return items newest first, optionally only those owned by owner_id."""
        query = _items.select()
        if owner_id is not None:
            query = query.where(_items.c.owner_id == owner_id)
        query = query.order_by(_items.c.created_at.desc(), _items.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_record(r) for r in rows]

    def update(self, record_id: str, **fields) -> bool:
        """Update any subset of name, price, photo_url.

        Returns True if a row was updated, False if record_id was not found.
        Raises ValueError for any other field name.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown item fields: {unknown!r}")
        if "price" in fields:
            fields["price"] = str(fields["price"])
        if not fields:
            return self.get(record_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_items.update().where(_items.c.id == record_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete(self, record_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_items.delete().where(_items.c.id == record_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_record(row) -> ContentRecord:
    return ContentRecord(
        id=row.id,
        name=row.name,
        price=Decimal(row.price),
        photo_url=row.photo_url,
        owner_id=row.owner_id,
        owner_email=row.owner_email,
        created_at=row.created_at,
    )
