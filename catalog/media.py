"""
catalog/media.py -- Binary object store for item photos.

A local directory served under a public base URL. Keys are
"<epoch milliseconds>-<original filename with whitespace runs replaced by ->",
so two uploads of "my photo.jpg" never collide and the URL stays readable.

delete() only touches URLs under this store's base URL. Photos that were
supplied as external links are left alone.

Every filesystem failure is raised as StorageError. Whether that is fatal is
the caller's decision -- CatalogService logs and swallows it on delete.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from urllib.parse import quote, unquote

from core.errors import StorageError, ValidationError

logger = logging.getLogger("shelfguard.media")

_WHITESPACE_RE = re.compile(r"\s+")
# Anything outside this set is dropped from the filename part of the key.
_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")

MAX_PHOTO_BYTES = 5 * 1024 * 1024


def make_key(filename: str, now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    name = _WHITESPACE_RE.sub("-", Path(filename).name.strip())
    name = _UNSAFE_RE.sub("", name).lstrip(".") or "upload"
    return f"{stamp}-{name}"


class MediaStore:
    def __init__(self, root: Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def upload(self, filename: str, data: bytes) -> str:
        """Store data under a fresh key and return its public URL."""
        if not data:
            raise ValidationError("The photo file is empty.")
        if len(data) > MAX_PHOTO_BYTES:
            raise ValidationError("Photos must be 5 MB or smaller.")
        key = make_key(filename)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            (self.root / key).write_bytes(data)
        except OSError as exc:
            raise StorageError("Could not save the photo.") from exc
        logger.info("Stored photo %s (%d bytes)", key, len(data))
        return f"{self.base_url}/{quote(key)}"

    def key_for(self, url: str | None) -> str | None:
        """Return the key for a URL this store issued, or None for foreign URLs."""
        if not url or not url.startswith(self.base_url + "/"):
            return None
        key = unquote(url[len(self.base_url) + 1 :])
        if not key or "/" in key or key.startswith("."):
            return None
        return key

    def delete(self, url: str | None) -> bool:
        """Delete the object behind url. Returns False for foreign or already-missing objects."""
        key = self.key_for(url)
        if key is None:
            return False
        try:
            (self.root / key).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError("Could not delete the photo.") from exc
        logger.info("Deleted photo %s", key)
        return True
