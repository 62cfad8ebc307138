"""Token construction and signing with the key store's current key."""

from datetime import timedelta

import jwt
import uuid_utils

from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.durations import to_seconds
from tokenkeep.core.settings import AuthSettings, SigningAlgorithm
from tokenkeep.crypto.key_store import KeyStore
from tokenkeep.crypto.types import (
    IssuedToken,
    SubjectClaims,
    TokenPair,
    TokenType,
)


class TokenIssuer:
    """Mints HMAC-signed access and refresh tokens."""

    def __init__(
        self,
        key_store: KeyStore,
        *,
        issuer: str,
        audience: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        algorithm: SigningAlgorithm = "HS256",
        clock: Clock = utc_now,
    ) -> None:
        self._key_store = key_store
        self._issuer = issuer
        self._audience = audience
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(
        cls, key_store: KeyStore, settings: AuthSettings, clock: Clock = utc_now
    ) -> "TokenIssuer":
        return cls(
            key_store,
            issuer=settings.issuer,
            audience=settings.audience,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    @property
    def access_ttl(self) -> timedelta:
        return self._access_ttl

    @property
    def refresh_ttl(self) -> timedelta:
        return self._refresh_ttl

    def issue_access_token(
        self,
        subject_id: str,
        claims: SubjectClaims | None = None,
        pair_id: str | None = None,
    ) -> IssuedToken:
        """Create a short-lived access token."""
        return self._issue(
            subject_id, claims, TokenType.ACCESS, self._access_ttl, pair_id
        )

    def issue_refresh_token(
        self,
        subject_id: str,
        claims: SubjectClaims | None,
        pair_id: str,
    ) -> IssuedToken:
        """Create a long-lived refresh token linked to its access sibling."""
        return self._issue(
            subject_id, claims, TokenType.REFRESH, self._refresh_ttl, pair_id
        )

    def issue_pair(
        self, subject_id: str, claims: SubjectClaims | None = None
    ) -> TokenPair:
        """Create an access + refresh token pair sharing one pair id."""
        pair_id = str(uuid_utils.uuid7())
        access = self.issue_access_token(subject_id, claims, pair_id)
        refresh = self.issue_refresh_token(subject_id, claims, pair_id)
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_ttl_seconds=to_seconds(self._access_ttl),
            refresh_ttl_seconds=to_seconds(self._refresh_ttl),
            pair_id=pair_id,
        )

    def _issue(
        self,
        subject_id: str,
        claims: SubjectClaims | None,
        token_type: TokenType,
        ttl: timedelta,
        pair_id: str | None,
    ) -> IssuedToken:
        # Raises NoActiveKeyError: never fall back to an unsigned token.
        key = self._key_store.current_key()
        claims = claims or SubjectClaims()
        now = self._clock()
        expires_at = now + ttl
        token_id = str(uuid_utils.uuid7())
        payload = {
            "iss": self._issuer,
            "aud": self._audience,
            "sub": subject_id,
            "type": token_type.value,
            "jti": token_id,
            "kid": key.id,
            "permissions": claims.permissions,
            "iat": now,
            "exp": expires_at,
        }
        if claims.role is not None:
            payload["role"] = claims.role
        if pair_id is not None:
            payload["pair_id"] = pair_id
        token = jwt.encode(
            payload,
            key.secret,
            algorithm=self._algorithm,
            headers={"kid": key.id},
        )
        return IssuedToken(
            token=token, token_id=token_id, key_id=key.id, expires_at=expires_at
        )
