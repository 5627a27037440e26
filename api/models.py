"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. The gateway maps between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity

# Loose shape check only. The store compares emails exactly as submitted.
_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup. All four fields are required.

    Values are stored as submitted. The password in particular is never
    trimmed, so login sees exactly what signup hashed.
    """

    email: str = Field(min_length=3, max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=72)
    login_id: str = Field(min_length=1, max_length=255)
    contact_no: str = Field(min_length=1, max_length=32)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """The public view of an identity. Never includes hashes or subject ids."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    login_id: str
    provider: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserSummary":
        return cls(
            id=identity.id,
            email=identity.email_address,
            login_id=identity.login_handle,
            provider=identity.provider,
        )


class AuthResponse(BaseModel):
    """Response body for a successful signup or login."""

    success: bool = True
    user: UserSummary


class MeResponse(BaseModel):
    """Response body for GET /api/v1/auth/me. user is None when unauthenticated."""

    authenticated: bool
    user: Optional[UserSummary] = None


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logged out"


class GoogleDebugResponse(BaseModel):
    """Safe summary of the Google OAuth configuration. No secrets."""

    has_client_id: bool
    client_id_prefix: Optional[str]
    has_client_secret: bool
    callback_url: str
    base_url: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
