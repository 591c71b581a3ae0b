"""
API request and response models for Shelfguard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models only bound sizes. Field rules (email shape, name length,
price) are enforced by the services so the API, the CLI and any other caller
get the same ValidationError messages.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from auth.models import CredentialRecord, Identity, Session
from catalog.models import ContentRecord

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)
    name: str = Field(max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class RoleUpdate(BaseModel):
    role: RoleEnum


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: RoleEnum

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(id=identity.id, email=identity.email, name=identity.name, role=identity.role.value)


class SessionResponse(BaseModel):
    """Returned by login and register. The token is also set as an httpOnly cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    issued_at: str
    expires_at: str
    identity: IdentityResponse

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            access_token=session.token,
            issued_at=session.issued_at.isoformat(),
            expires_at=session.expires_at.isoformat(),
            identity=IdentityResponse.from_identity(session.identity),
        )


class UserResponse(BaseModel):
    """One row of the admin user table. role_editable is False on the caller's own row."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: RoleEnum
    created_at: str
    role_editable: bool

    @classmethod
    def from_record(cls, record: CredentialRecord, role_editable: bool) -> "UserResponse":
        return cls(
            id=record.id,
            email=record.email,
            name=record.name,
            role=record.role.value,
            created_at=record.created_at or "",
            role_editable=role_editable,
        )


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

# Price is accepted as a string or a JSON number; the catalog service decides
# whether it is a valid non-negative amount.
_Price = Union[str, int, float]


class ItemCreate(BaseModel):
    name: str = Field(max_length=500)
    price: _Price
    photo_url: Optional[str] = Field(default=None, max_length=2048)


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=500)
    price: Optional[_Price] = None
    photo_url: Optional[str] = Field(default=None, max_length=2048)
    clear_photo: bool = False


class ItemResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: Decimal
    photo_url: Optional[str]
    owner_id: str
    owner_email: str
    created_at: str
    can_modify: bool

    @classmethod
    def from_record(cls, record: ContentRecord, can_modify: bool) -> "ItemResponse":
        return cls(
            id=record.id,
            name=record.name,
            price=record.price,
            photo_url=record.photo_url,
            owner_id=record.owner_id,
            owner_email=record.owner_email,
            created_at=record.created_at,
            can_modify=can_modify,
        )


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
