"""Request and response bodies for the HTTP surface."""

from datetime import datetime

from pydantic import BaseModel, Field

from tokenkeep.revocation.types import RevocationReason


class IssueTokensPayload(BaseModel):
    """Request body for POST /internal/tokens (sent by the login controller)."""

    subject_id: str = Field(min_length=1)
    role: str | None = None
    permissions: list[str] = Field(default_factory=list)


class TokenPairResponse(BaseModel):
    """Tokens and lifetimes handed to the client."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_expires_in: int


class RefreshPayload(BaseModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str | None = None


class LogoutPayload(BaseModel):
    """Request body for POST /auth/logout."""

    refresh_token: str | None = None
    cascade: bool = False


class LogoutResponse(BaseModel):
    access_revoked: bool
    refresh_revoked: bool


class RevokePayload(BaseModel):
    """Request body for POST /auth/revoke."""

    tokens: list[str] = Field(min_length=1)
    reason: RevocationReason = RevocationReason.MANUAL_REVOKE


class RotateKeyResponse(BaseModel):
    key_id: str
    created_at: datetime
    expires_at: datetime


class IdentityResponse(BaseModel):
    subject_id: str
    role: str | None = None
    permissions: list[str] = Field(default_factory=list)
    expires_at: datetime


class HealthResponse(BaseModel):
    status: str = "ok"
    revocation_backend: str
    degraded: bool
