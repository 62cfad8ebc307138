"""Application settings loaded from environment variables."""

from datetime import timedelta
from pathlib import Path
from typing import Literal, Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tokenkeep.core.durations import Duration

ROTATION_INTERVAL_DEFAULT = timedelta(days=30)
KEY_GRACE_PERIOD_DEFAULT = timedelta(days=7)
ACCESS_TOKEN_TTL_DEFAULT = timedelta(minutes=60)
REFRESH_TOKEN_TTL_DEFAULT = timedelta(days=7)
ROTATION_GRACE_SECONDS_DEFAULT = 10.0
REDIS_PORT_DEFAULT = 6379
REDIS_TIMEOUT_DEFAULT = 0.5
REDIS_RECONNECT_INTERVAL_DEFAULT = 30.0

SigningAlgorithm = Literal["HS256", "HS384", "HS512"]


class RedisSettings(BaseSettings):
    """Connection settings for the shared revocation backend."""

    model_config = SettingsConfigDict(env_prefix="AUTH_REDIS_")

    url: str | None = None
    host: str = "localhost"
    port: int = REDIS_PORT_DEFAULT
    password: str | None = None
    db: int = 1
    timeout: float = REDIS_TIMEOUT_DEFAULT
    reconnect_interval: float = REDIS_RECONNECT_INTERVAL_DEFAULT

    @property
    def connection_url(self) -> str:
        """Build the redis:// URL unless one was given explicitly."""
        if self.url:
            return self.url
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class AuthSettings(BaseSettings):
    """Token, key rotation and revocation settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    jwt_secret: str = ""
    jwt_fallback_secret: str | None = None
    jwt_algorithm: SigningAlgorithm = "HS256"
    issuer: str = "tokenkeep"
    audience: str = "api-users"

    key_rotation_interval: Duration = ROTATION_INTERVAL_DEFAULT
    key_grace_period: Duration = KEY_GRACE_PERIOD_DEFAULT
    key_file: Path = Path("data/jwt-keys.json")
    signing_key_encryption_key: str = ""

    access_token_ttl: Duration = ACCESS_TOKEN_TTL_DEFAULT
    refresh_token_ttl: Duration = REFRESH_TOKEN_TTL_DEFAULT

    revocation_enabled: bool = True
    revocation_check_enabled: bool = True
    revocation_backend: Literal["memory", "redis"] = "memory"
    rotation_grace_seconds: float = ROTATION_GRACE_SECONDS_DEFAULT

    internal_token: str = ""
    cors_origins: str = ""
    log_level: str = "INFO"
    log_json: bool = True

    @model_validator(mode="after")
    def _check_lifetimes(self) -> Self:
        if self.access_token_ttl >= self.refresh_token_ttl:
            msg = "access_token_ttl must be shorter than refresh_token_ttl"
            raise ValueError(msg)
        # A retired key has to outlive every token it signed.
        if self.key_grace_period < self.refresh_token_ttl:
            msg = "key_grace_period must be at least refresh_token_ttl"
            raise ValueError(msg)
        return self

    def get_cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        if not self.cors_origins:
            return []
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
