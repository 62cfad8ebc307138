"""Credential rejection reasons and the client-facing error mapping."""

from enum import StrEnum
from typing import ClassVar


class RejectReason(StrEnum):
    """Internal reason a credential was rejected."""

    MISSING_TOKEN = "missing_token"
    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    WRONG_TYPE = "wrong_type"
    REVOKED = "revoked"
    NO_ACTIVE_KEY = "no_active_key"


class CredentialError(Exception):
    """Base class for every authentication failure.

    ``reason`` is logged; ``category`` and ``description`` are the only
    details a client ever sees.
    """

    reason: ClassVar[RejectReason]
    category: ClassVar[str]
    description: ClassVar[str]
    status_code: ClassVar[int] = 401
    retryable: ClassVar[bool] = False

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.reason.value)
        self.detail = detail or self.reason.value

    def to_body(self) -> dict[str, str]:
        """OAuth-style error body."""
        return {"error": self.category, "error_description": self.description}


class MissingTokenError(CredentialError):
    reason = RejectReason.MISSING_TOKEN
    category = "unauthenticated"
    description = "Authentication required"


class MalformedTokenError(CredentialError):
    reason = RejectReason.MALFORMED
    category = "invalid_token"
    description = "Invalid token"


class InvalidSignatureError(CredentialError):
    reason = RejectReason.INVALID_SIGNATURE
    category = "invalid_token"
    description = "Invalid token"


class TokenExpiredError(CredentialError):
    reason = RejectReason.EXPIRED
    category = "token_expired"
    description = "Token has expired"
    retryable = True


class WrongTokenTypeError(CredentialError):
    reason = RejectReason.WRONG_TYPE
    category = "invalid_token"
    description = "Invalid token"
    status_code = 403


class TokenRevokedError(CredentialError):
    reason = RejectReason.REVOKED
    category = "token_revoked"
    description = "Token has been revoked"
    status_code = 403


class NoActiveKeyError(CredentialError):
    """No usable signing key: an operator must configure a primary secret."""

    reason = RejectReason.NO_ACTIVE_KEY
    category = "server_error"
    description = "Authentication is unavailable"
    status_code = 500
