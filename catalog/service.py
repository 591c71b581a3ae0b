"""
catalog/service.py -- Item listing and CRUD with ownership checks.

Order of checks for update/delete:
  1. the record exists        -> NotFoundError otherwise
  2. the caller may modify it -> PermissionDeniedError otherwise
  3. the new fields are valid -> ValidationError otherwise
  4. write

Field validation (name, price, photo URL) happens before any upload or write,
so a rejected request leaves no orphan photo behind. owner_id and owner_email
always come from the caller's identity.

Photo cleanup is best-effort. When an item is deleted or its photo replaced,
the old object is removed from the media store; if that fails the failure is
logged and the operation still succeeds.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any

from auth import policy
from auth.models import Identity
from auth.sanitize import parse_price, sanitize, validate_item_name
from catalog.media import MediaStore
from catalog.models import ContentFields, ContentRecord
from catalog.store import ContentStore
from core.bounded import bounded_call
from core.errors import AppError, NotFoundError, ValidationError

logger = logging.getLogger("shelfguard.catalog")

_PHOTO_URL_RE = re.compile(r"^https?://\S+$")
_PHOTO_URL_MAX = 2048


class CatalogService:
    def __init__(self, store: ContentStore, media: MediaStore, timeout: float = 5.0) -> None:
        self.store = store
        self.media = media
        self.timeout = timeout

    async def _call(self, fn, *args: Any, **kwargs: Any) -> Any:
        return await bounded_call(fn, *args, timeout=self.timeout, **kwargs)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def list_visible(self, identity: Identity | None) -> list[ContentRecord]:
        """Everything for admins and anonymous visitors; own items for users."""
        return await self._call(self.store.list_items, policy.visible_owner(identity))

    async def get(self, identity: Identity | None, record_id: str) -> ContentRecord:
        record = await self._call(self.store.get, record_id)
        owner = policy.visible_owner(identity)
        if record is None or (owner is not None and record.owner_id != owner):
            raise NotFoundError("Item not found.")
        return record

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def create(self, identity: Identity | None, fields: ContentFields) -> ContentRecord:
        identity = policy.require_authenticated(identity)
        name = _clean_name(fields.name)
        price = _clean_price(fields.price)
        photo_url = await self._resolve_photo(fields)

        record = ContentRecord(
            name=name,
            price=price,
            photo_url=photo_url,
            owner_id=identity.id,
            owner_email=identity.email,
        )
        try:
            record_id = await self._call(self.store.create, record)
        except AppError:
            if fields.photo_data is not None:
                await self._discard_photo(photo_url)
            raise
        logger.info("%s created item %s", identity.email, record_id)
        return await self._call(self.store.get, record_id)

    async def update(self, identity: Identity | None, record_id: str, fields: ContentFields) -> ContentRecord:
        record = await self._call(self.store.get, record_id)
        if record is None:
            raise NotFoundError("Item not found.")
        identity = policy.authorize_modify(identity, record.owner_id)

        changes: dict[str, Any] = {}
        if fields.name is not None:
            changes["name"] = _clean_name(fields.name)
        if fields.price is not None:
            changes["price"] = _clean_price(fields.price)
        if fields.photo_data is not None or fields.photo_url is not None:
            changes["photo_url"] = await self._resolve_photo(fields)
        elif fields.clear_photo:
            changes["photo_url"] = None

        if not changes:
            raise ValidationError("No fields to update.")

        try:
            if not await self._call(self.store.update, record_id, **changes):
                raise NotFoundError("Item not found.")
        except AppError:
            if fields.photo_data is not None:
                await self._discard_photo(changes["photo_url"])
            raise
        if "photo_url" in changes and changes["photo_url"] != record.photo_url:
            await self._discard_photo(record.photo_url)
        logger.info("%s updated item %s (%s)", identity.email, record_id, ", ".join(sorted(changes)))
        return await self._call(self.store.get, record_id)

    async def delete(self, identity: Identity | None, record_id: str) -> None:
        record = await self._call(self.store.get, record_id)
        if record is None:
            raise NotFoundError("Item not found.")
        identity = policy.authorize_modify(identity, record.owner_id)
        await self._discard_photo(record.photo_url)
        if not await self._call(self.store.delete, record_id):
            raise NotFoundError("Item not found.")
        logger.info("%s deleted item %s", identity.email, record_id)

    # ------------------------------------------------------------------
    # Photos
    # ------------------------------------------------------------------

    async def _resolve_photo(self, fields: ContentFields) -> str | None:
        if fields.photo_data is not None:
            return await self._call(self.media.upload, fields.photo_filename or "upload", fields.photo_data)
        if fields.photo_url:
            url = fields.photo_url.strip()
            if len(url) > _PHOTO_URL_MAX or not _PHOTO_URL_RE.match(url):
                raise ValidationError("Photo URL must be an http(s) address.")
            return url
        return None

    async def _discard_photo(self, url: str | None) -> None:
        if not url:
            return
        try:
            await self._call(self.media.delete, url)
        except AppError as exc:
            logger.warning("Could not remove photo %s: %s", url, exc.message)


def _clean_name(raw: str | None) -> str:
    if not validate_item_name(raw):
        raise ValidationError("Item name must be between 1 and 120 characters.")
    return sanitize(raw)


def _clean_price(raw: str | None) -> Decimal:
    price = parse_price(raw)
    if price is None:
        raise ValidationError("Price must be a number greater than or equal to 0.")
    return price
