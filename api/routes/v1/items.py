"""
api/routes/v1/items.py -- Catalog item routes.

Routes:
  GET    /items              -- list items visible to the caller (public)
  GET    /items/{item_id}    -- one visible item (public)
  POST   /items              -- create (JSON body)            requires auth
  POST   /items/upload       -- create with a photo (multipart) requires auth
  PATCH  /items/{item_id}    -- partial update (JSON body)     owner or admin
  POST   /items/{item_id}/photo -- replace the photo (multipart) owner or admin
  DELETE /items/{item_id}    -- delete                          owner or admin

Visibility: anonymous visitors and admins see every item; a user sees only
the items they own. Write routes resolve the identity softly and let
CatalogService decide, so a missing item is 404 even for a caller who could
not have changed it.

File uploads: photos are capped at 5 MB (catalog/media.py).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile

from api.limiter import limiter
from api.models import ItemCreate, ItemResponse, ItemUpdate
from auth import policy
from auth.dependencies import get_current_identity, try_get_current_identity
from auth.models import Identity
from catalog.media import MAX_PHOTO_BYTES
from catalog.models import ContentFields, ContentRecord
from catalog.service import CatalogService

router = APIRouter()


def _to_response(record: ContentRecord, identity: Optional[Identity]) -> ItemResponse:
    return ItemResponse.from_record(record, policy.can_modify(identity, record.owner_id))


def _price_text(value) -> Optional[str]:
    return None if value is None else str(value)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/items", response_model=list[ItemResponse])
async def list_items(
    request: Request,
    identity: Optional[Identity] = Depends(try_get_current_identity),
) -> list[ItemResponse]:
    """Return items newest first, filtered by the caller's role."""
    catalog: CatalogService = request.app.state.catalog
    records = await catalog.list_visible(identity)
    return [_to_response(r, identity) for r in records]


@router.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(
    request: Request,
    item_id: str,
    identity: Optional[Identity] = Depends(try_get_current_identity),
) -> ItemResponse:
    catalog: CatalogService = request.app.state.catalog
    record = await catalog.get(identity, item_id)
    return _to_response(record, identity)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------


@limiter.limit("30/minute")
@router.post("/items", response_model=ItemResponse, status_code=201)
async def create_item(
    request: Request,
    body: ItemCreate,
    identity: Identity = Depends(get_current_identity),
) -> ItemResponse:
    catalog: CatalogService = request.app.state.catalog
    fields = ContentFields(name=body.name, price=_price_text(body.price), photo_url=body.photo_url)
    record = await catalog.create(identity, fields)
    return _to_response(record, identity)


@limiter.limit("30/minute")
@router.post("/items/upload", response_model=ItemResponse, status_code=201)
async def create_item_with_photo(
    request: Request,
    name: str = Form(max_length=500),
    price: str = Form(max_length=40),
    photo: UploadFile = File(...),
    identity: Identity = Depends(get_current_identity),
) -> ItemResponse:
    """Create an item and upload its photo in one multipart request."""
    catalog: CatalogService = request.app.state.catalog
    data = await photo.read(MAX_PHOTO_BYTES + 1)
    fields = ContentFields(name=name, price=price, photo_filename=photo.filename, photo_data=data)
    record = await catalog.create(identity, fields)
    return _to_response(record, identity)


@limiter.limit("30/minute")
@router.patch("/items/{item_id}", response_model=ItemResponse)
async def update_item(
    request: Request,
    item_id: str,
    body: ItemUpdate,
    identity: Optional[Identity] = Depends(try_get_current_identity),
) -> ItemResponse:
    catalog: CatalogService = request.app.state.catalog
    fields = ContentFields(
        name=body.name,
        price=_price_text(body.price),
        photo_url=body.photo_url,
        clear_photo=body.clear_photo,
    )
    record = await catalog.update(identity, item_id, fields)
    return _to_response(record, identity)


@limiter.limit("30/minute")
@router.post("/items/{item_id}/photo", response_model=ItemResponse)
async def replace_photo(
    request: Request,
    item_id: str,
    photo: UploadFile = File(...),
    identity: Optional[Identity] = Depends(try_get_current_identity),
) -> ItemResponse:
    catalog: CatalogService = request.app.state.catalog
    data = await photo.read(MAX_PHOTO_BYTES + 1)
    record = await catalog.update(identity, item_id, ContentFields(photo_filename=photo.filename, photo_data=data))
    return _to_response(record, identity)


@limiter.limit("30/minute")
@router.delete("/items/{item_id}", status_code=204)
async def delete_item(
    request: Request,
    item_id: str,
    identity: Optional[Identity] = Depends(try_get_current_identity),
) -> Response:
    catalog: CatalogService = request.app.state.catalog
    await catalog.delete(identity, item_id)
    return Response(status_code=204)
