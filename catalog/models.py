"""
catalog/models.py -- Domain dataclasses for the item catalog.

Pure data containers with zero logic. Validation lives in auth/sanitize.py,
authorization in auth/policy.py, orchestration in catalog/service.py.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass
class ContentRecord:
    """A priced catalog item.

    owner_id / owner_email are copied from the creating identity by the
    service and are never taken from client input.

    id is None before the record is written to the database.
    """

    name: str
    price: Decimal
    owner_id: str
    owner_email: str
    photo_url: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class ContentFields:
    """Client-supplied fields for create/update, before validation.

    Every field is optional so the same type serves partial updates. A photo
    is either a URL (photo_url) or an uploaded file (photo_filename +
    photo_data); an upload wins if both are present. clear_photo removes the
    current photo on update.
    """

    name: Optional[str] = None
    price: Optional[str] = None
    photo_url: Optional[str] = None
    photo_filename: Optional[str] = None
    photo_data: Optional[bytes] = None
    clear_photo: bool = False
