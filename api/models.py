"""
API request and response models for the account REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request models only bound field sizes. Credential policy (username/password
shape, email syntax) is enforced by the account service so every caller,
HTTP or CLI, gets the same error kinds.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AccountView, LoginResult

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/accounts."""

    username: str = Field(max_length=255)
    # bcrypt truncates beyond 72 bytes
    password: str = Field(max_length=72)
    name: str = Field(default="", max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    bio: Optional[str] = Field(default=None, max_length=1000)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=72)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=128)


class WithdrawRequest(BaseModel):
    """Request body for POST /api/v1/accounts/me/withdraw. The password is re-checked."""

    password: str = Field(max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public projection of an account. The password hash is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int]
    username: str
    name: str
    email: Optional[str]
    bio: Optional[str]
    status_code: str
    refresh_token: Optional[str] = None
    created_at: Optional[datetime]

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        return cls(
            id=view.id,
            username=view.username,
            name=view.name,
            email=view.email,
            bio=view.bio,
            status_code=view.status_code,
            refresh_token=view.refresh_token,
            created_at=view.created_at,
        )


class LoginResponse(BaseModel):
    """Response body for login and refresh-token rotation."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_at: datetime
    account: AccountResponse

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            access_token=result.access_token.token,
            expires_in=result.access_token.expires_in,
            refresh_token=result.refresh_token.token,
            refresh_expires_at=result.refresh_token.expires_at,
            account=AccountResponse.from_view(result.account),
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    field: Optional[str] = None
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
    components: dict[str, str]
