"""
cache/store.py -- SQLite-backed client-local session cache.

Holds the one persisted session blob for a client context (the CLI uses
"default"). The blob is written wholesale on login and deleted on logout or
when bootstrap finds it stale. It is never partially updated.

The cache stores whatever opaque string it is given and knows nothing about
its contents. Validation belongs to auth.tokens.SessionIssuer.

Usage:
    cache = SessionCache(Path("~/.shelfguard/session.db").expanduser())
    cache.save("eyJ...")
    blob = cache.load()      # returns str or None
    cache.clear()
"""

import sqlite3
import time
from pathlib import Path
from typing import Optional

_DDL = """
CREATE TABLE IF NOT EXISTS client_session (
    context     TEXT PRIMARY KEY,
    blob        TEXT NOT NULL,
    saved_at    REAL NOT NULL
);
"""


class SessionCache:
    def __init__(self, db_path: Path, context: str = "default") -> None:
        self.context = context
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def load(self) -> Optional[str]:
        """Return the persisted blob for this context, or None."""
        row = self._conn.execute(
            "SELECT blob FROM client_session WHERE context = ?",
            (self.context,),
        ).fetchone()
        return row[0] if row is not None else None

    def save(self, blob: str) -> None:
        """Replace the persisted blob for this context."""
        self._conn.execute(
            "INSERT OR REPLACE INTO client_session (context, blob, saved_at) VALUES (?, ?, ?)",
            (self.context, blob, time.time()),
        )
        self._conn.commit()

    def clear(self) -> None:
        """Remove the persisted blob. A no-op when nothing is stored."""
        self._conn.execute("DELETE FROM client_session WHERE context = ?", (self.context,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
