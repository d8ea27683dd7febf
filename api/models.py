"""
API request and response models for Capgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthSession

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    # bcrypt only uses the first 72 bytes; 128 keeps inputs near that bound.
    password: str = Field(min_length=8, max_length=128)
    email: Optional[str] = Field(default=None, max_length=255)
    role: Literal["admin", "editor", "user"] = "user"


class OAuthRequest(BaseModel):
    """An email the OAuth provider layer has already verified."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    user_id: int
    capabilities: list[str]

    @classmethod
    def from_session(cls, session: AuthSession) -> "TokenResponse":
        return cls(
            access_token=session.token,
            user_id=session.identity.user_id,
            capabilities=list(session.identity.capabilities),
        )


class KeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    token_type: str = "key"


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    capabilities: list[str]
    token_type: str


class SeedResponse(BaseModel):
    created: list[str]
    skipped: list[str]


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
