"""Signature, structure and type validation across every verification key."""

from enum import StrEnum
from typing import Any, NamedTuple

import jwt
from pydantic import ValidationError

from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.errors import (
    CredentialError,
    InvalidSignatureError,
    MalformedTokenError,
    NoActiveKeyError,
    TokenExpiredError,
    WrongTokenTypeError,
)
from tokenkeep.core.settings import AuthSettings, SigningAlgorithm
from tokenkeep.crypto.key_store import KeyStore
from tokenkeep.crypto.types import SigningKey, TokenClaims, TokenType

REQUIRED_CLAIMS = ["exp", "iat", "jti", "sub", "type"]


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class VerifyStatus(StrEnum):
    VALID = "valid"
    SIGNATURE_MISMATCH = "signature_mismatch"
    INVALID = "invalid"


class VerifyOutcome(NamedTuple):
    """Result of checking a token against a single key."""

    status: VerifyStatus
    payload: dict[str, Any] | None = None
    error: CredentialError | None = None


class TokenVerifier:
    """Validates tokens without consulting revocation state."""

    def __init__(
        self,
        key_store: KeyStore,
        *,
        issuer: str,
        audience: str,
        algorithm: SigningAlgorithm = "HS256",
        leeway: float = 0,
        clock: Clock = utc_now,
    ) -> None:
        self._key_store = key_store
        self._issuer = issuer
        self._audience = audience
        self._algorithm = algorithm
        self._leeway = leeway
        self._clock = clock

    @classmethod
    def from_settings(
        cls, key_store: KeyStore, settings: AuthSettings, clock: Clock = utc_now
    ) -> "TokenVerifier":
        return cls(
            key_store,
            issuer=settings.issuer,
            audience=settings.audience,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    def verify(
        self, token: str, expected_type: TokenType | None = None
    ) -> TokenClaims:
        """Verify a token, trying each verification key in order.

        A signature mismatch moves on to the next key; any other failure
        is final because no other key could change it.
        """
        self._check_header(token)
        keys = self._key_store.verification_keys()
        if not keys and self._key_store.snapshot.current is None:
            raise NoActiveKeyError("no verification keys are configured")

        for key in keys:
            outcome = self.attempt(token, key)
            if outcome.error is not None:
                raise outcome.error
            if outcome.payload is None:
                continue
            claims = self._to_claims(outcome.payload, key)
            if expected_type is not None and claims.type is not expected_type:
                msg = f"expected {expected_type.value} token, got {claims.type.value}"
                raise WrongTokenTypeError(msg)
            return claims

        raise InvalidSignatureError("signature does not match any verification key")

    def attempt(self, token: str, key: SigningKey) -> VerifyOutcome:
        """Check a token against one key."""
        try:
            payload = jwt.decode(
                token,
                key.secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
                leeway=self._leeway,
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except jwt.InvalidSignatureError:
            return VerifyOutcome(VerifyStatus.SIGNATURE_MISMATCH)
        except jwt.PyJWTError as exc:
            return VerifyOutcome(
                VerifyStatus.INVALID, error=MalformedTokenError(str(exc))
            )
        error = self._check_times(payload)
        if error is not None:
            return VerifyOutcome(VerifyStatus.INVALID, error=error)
        return VerifyOutcome(VerifyStatus.VALID, payload=payload)

    def _check_times(self, payload: dict[str, Any]) -> CredentialError | None:
        """Judge exp and nbf against the injected clock; iat only has to be numeric."""
        now = self._clock().timestamp()
        expires = payload["exp"]
        not_before = payload.get("nbf", now)
        if not all(_is_timestamp(v) for v in (expires, payload["iat"], not_before)):
            return MalformedTokenError("exp, iat and nbf must be numeric")
        if expires <= now - self._leeway:
            return TokenExpiredError("Signature has expired")
        if not_before > now + self._leeway:
            return MalformedTokenError("The token is not yet valid (nbf)")
        return None

    def _check_header(self, token: str) -> None:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise MalformedTokenError(str(exc)) from exc
        # Pinned algorithm: reject "none" and any swap before touching keys.
        if header.get("alg") != self._algorithm:
            msg = f"unexpected algorithm {header.get('alg')!r}"
            raise MalformedTokenError(msg)

    @staticmethod
    def _to_claims(payload: dict[str, Any], key: SigningKey) -> TokenClaims:
        payload.setdefault("kid", key.id)
        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise MalformedTokenError("unexpected claim values") from exc
