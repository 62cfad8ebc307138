"""Type definitions for revocation records and reports."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class RevocationReason(StrEnum):
    MANUAL_REVOKE = "manual_revoke"
    TOKEN_ROTATED = "token_rotated"
    LOGOUT = "logout"
    BULK_REVOKE = "bulk_revoke"

    @classmethod
    def _missing_(cls, value: object) -> "RevocationReason | None":
        if value == "admin_logout":
            return cls.LOGOUT
        return None


class RevocationRecord(BaseModel):
    """Why and when a token was invalidated ahead of its expiry."""

    token_id: str
    revoked_at: datetime
    reason: RevocationReason
    token_type: str = "unknown"


class RevocationResult(BaseModel):
    """Per-token outcome of a batch revocation."""

    token_preview: str
    success: bool
    error: str | None = None


class RevocationStats(BaseModel):
    """Diagnostic view of the revocation store."""

    revoked_count: int
    backend: str
    degraded: bool
    enabled: bool
    timestamp: datetime
