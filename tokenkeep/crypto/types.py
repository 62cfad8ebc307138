"""Type definitions for signing keys and JWT operations."""

from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TokenType(StrEnum):
    """Value of the ``type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"


class KeySource(StrEnum):
    """Where a signing key's secret came from."""

    GENERATED = "generated"
    CONFIGURED = "configured"


class SigningKey(BaseModel):
    """A symmetric HMAC key used to sign and verify tokens."""

    model_config = ConfigDict(frozen=True)

    id: str
    secret: str = Field(repr=False)
    created_at: datetime
    expires_at: datetime
    is_active: bool = True
    source: KeySource = KeySource.GENERATED

    def verifiable_at(self, now: datetime, grace_period: timedelta) -> bool:
        """True while tokens signed by this key may still be accepted."""
        return now <= self.expires_at + grace_period


class KeySet(BaseModel):
    """Immutable snapshot of every retained key."""

    model_config = ConfigDict(frozen=True)

    current_key_id: str | None = None
    keys: tuple[SigningKey, ...] = ()

    def get(self, key_id: str | None) -> SigningKey | None:
        """Look up a key by id."""
        for key in self.keys:
            if key.id == key_id:
                return key
        return None

    @property
    def current(self) -> SigningKey | None:
        """The key that signs new tokens, if it is still active."""
        key = self.get(self.current_key_id)
        if key is None or not key.is_active:
            return None
        return key


class CurrentKeySummary(BaseModel):
    """Non-secret view of the current key."""

    id: str
    created_at: datetime
    expires_at: datetime
    days_until_expiration: int


class KeyStoreStatus(BaseModel):
    """Diagnostic view of the key store."""

    current_key_id: str | None
    current_key: CurrentKeySummary | None
    verification_key_count: int
    total_key_count: int
    rotation_interval_seconds: int
    grace_period_seconds: int
    last_persisted_at: datetime | None = None


class SubjectClaims(BaseModel):
    """Authorization hints carried by both tokens of a pair."""

    role: str | None = None
    permissions: list[str] = Field(default_factory=list)


class TokenClaims(BaseModel):
    """Decoded and verified token payload."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    subject_id: str = Field(alias="sub")
    type: TokenType
    token_id: str = Field(alias="jti")
    key_id: str | None = Field(default=None, alias="kid")
    role: str | None = None
    permissions: list[str] = Field(default_factory=list)
    pair_id: str | None = None
    issued_at: datetime = Field(alias="iat")
    expires_at: datetime = Field(alias="exp")
    issuer: str = Field(default="", alias="iss")
    audience: str = Field(default="", alias="aud")


class IssuedToken(BaseModel):
    """A freshly signed token and the identifiers embedded in it."""

    token: str
    token_id: str
    key_id: str
    expires_at: datetime


class TokenPair(BaseModel):
    """Linked access and refresh tokens returned to the client."""

    access_token: str
    refresh_token: str
    access_ttl_seconds: int
    refresh_ttl_seconds: int
    pair_id: str
    token_type: str = "Bearer"
