"""
API request and response models for the admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in core/models.py, which own the internal domain
representation. Route handlers map between the two.

The password digest never appears in any response model: GrantResponse only
exposes whether one is cached.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import AuthorizationRecord

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class GrantCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_principal_name: str = Field(min_length=1, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)


class PasswordUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{upn}/password."""

    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class GrantResponse(BaseModel):
    """One authorization grant, without its password digest."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_principal_name: str
    display_name: Optional[str] = None
    server_id: str
    has_password: bool = False
    last_password_update: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: AuthorizationRecord) -> "GrantResponse":
        return cls(
            id=record.id,
            user_principal_name=record.user_principal_name,
            display_name=record.display_name,
            server_id=record.server_id,
            has_password=record.has_password,
            last_password_update=record.last_password_update,
            created_at=record.created_at,
        )


class AccessCheckResponse(BaseModel):
    """Response for GET /api/v1/users/{upn}/access."""

    model_config = ConfigDict(frozen=True)

    user_principal_name: str
    server_id: str
    allowed: bool


class SyncResponse(BaseModel):
    """Response for POST /api/v1/users/sync."""

    model_config = ConfigDict(frozen=True)

    added: int


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
