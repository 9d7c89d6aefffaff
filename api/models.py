"""
API request and response models for AuthApp REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request fields that the contract reports as "400 on missing" are declared
optional here and checked in the route, so a missing email yields the
documented 400 rather than a 422 schema error.

Passwords and digests never appear in a response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity, User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    email: Optional[str] = Field(default=None, max_length=256)
    password: Optional[str] = Field(default=None, max_length=255)


class UserCreate(BaseModel):
    """Request body for POST /api/users."""

    email: Optional[str] = Field(default=None, max_length=256)
    password: Optional[str] = Field(default=None, max_length=255)
    roles: list[str] = Field(default_factory=list, max_length=50)

    @field_validator("roles", mode="before")
    @classmethod
    def none_means_empty(cls, value):
        return [] if value is None else value


class UserUpdateRequest(BaseModel):
    """Request body for PUT /api/users/{id}.

    roles absent or null -> assignments untouched; roles == [] -> all removed.
    The password is re-hashed on every update; there is no keep-as-is value.
    """

    id: int
    email: Optional[str] = Field(default=None, max_length=256)
    password: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None
    roles: Optional[list[str]] = Field(default=None, max_length=50)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/auth/change-password."""

    current_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public representation of a user, with resolved role names."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    is_active: bool
    created_at: str
    roles: list[str] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            is_active=user.is_active,
            created_at=user.created_at or "",
            roles=list(user.roles),
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool = True
    user: UserResponse


class MeResponse(BaseModel):
    """Claims of the authenticated caller."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    name: str
    roles: list[str]

    @classmethod
    def from_identity(cls, identity: Identity) -> "MeResponse":
        return cls(
            user_id=identity.user_id,
            name=identity.name,
            roles=[value for kind, value in identity.claims() if kind == "role"],
        )


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str


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
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
