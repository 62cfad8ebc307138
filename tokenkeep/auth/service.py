"""Login issuance, request authentication, refresh rotation and logout."""

from datetime import datetime

from pydantic import BaseModel, Field

from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.errors import (
    CredentialError,
    MissingTokenError,
    TokenRevokedError,
)
from tokenkeep.core.logging import get_logger
from tokenkeep.crypto.issuer import TokenIssuer
from tokenkeep.crypto.key_store import KeyStore
from tokenkeep.crypto.types import (
    KeyStoreStatus,
    SigningKey,
    SubjectClaims,
    TokenClaims,
    TokenPair,
    TokenType,
)
from tokenkeep.crypto.verifier import TokenVerifier
from tokenkeep.revocation.store import RevocationStore
from tokenkeep.revocation.types import RevocationReason

logger = get_logger(__name__)


class Identity(BaseModel):
    """The authenticated caller attached to a request."""

    subject_id: str
    role: str | None = None
    permissions: list[str] = Field(default_factory=list)
    token_id: str
    pair_id: str | None = None
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "Identity":
        return cls(
            subject_id=claims.subject_id,
            role=claims.role,
            permissions=claims.permissions,
            token_id=claims.token_id,
            pair_id=claims.pair_id,
            expires_at=claims.expires_at,
        )


class PairRevocation(BaseModel):
    """Outcome of revoking each side of a token pair."""

    access_revoked: bool
    refresh_revoked: bool


class CredentialService:
    """Composes issuer, verifier and revocation store."""

    def __init__(
        self,
        key_store: KeyStore,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        revocations: RevocationStore,
        clock: Clock = utc_now,
    ) -> None:
        self._key_store = key_store
        self._issuer = issuer
        self._verifier = verifier
        self._revocations = revocations
        self._clock = clock

    @property
    def revocations(self) -> RevocationStore:
        return self._revocations

    def issue_pair(
        self, subject_id: str, claims: SubjectClaims | None = None
    ) -> TokenPair:
        """Mint a new pair after a successful login."""
        pair = self._issuer.issue_pair(subject_id, claims)
        logger.info("token_pair_issued", subject_id=subject_id, pair_id=pair.pair_id)
        return pair

    async def authenticate(self, token: str | None) -> Identity:
        """Resolve an access token to an identity or raise CredentialError."""
        if not token:
            raise MissingTokenError()
        try:
            claims = self._verifier.verify(token, expected_type=TokenType.ACCESS)
            if await self._revocations.is_id_revoked(claims.token_id, claims.pair_id):
                raise TokenRevokedError(f"token {claims.token_id} is revoked")
        except CredentialError as exc:
            logger.info("authentication_rejected", reason=exc.reason.value, detail=exc.detail)
            raise
        return Identity.from_claims(claims)

    async def refresh(
        self, refresh_token: str | None, overrides: SubjectClaims | None = None
    ) -> TokenPair:
        """Consume a refresh token and mint a brand-new pair.

        Two concurrent calls with the same token inside the rotation grace
        window both succeed; each gets an independent pair.
        """
        if not refresh_token:
            raise MissingTokenError()
        try:
            claims = self._verifier.verify(refresh_token, expected_type=TokenType.REFRESH)
            if await self._revocations.is_id_revoked(claims.token_id, claims.pair_id):
                raise TokenRevokedError(f"refresh token {claims.token_id} is revoked")
        except CredentialError as exc:
            logger.info("refresh_rejected", reason=exc.reason.value, detail=exc.detail)
            raise

        remaining = int((claims.expires_at - self._clock()).total_seconds())
        await self._revocations.revoke(
            refresh_token, RevocationReason.TOKEN_ROTATED, max(1, remaining)
        )
        carried = SubjectClaims(role=claims.role, permissions=claims.permissions)
        if overrides is not None:
            carried = carried.model_copy(update=overrides.model_dump(exclude_unset=True))
        pair = self._issuer.issue_pair(claims.subject_id, carried)
        logger.info(
            "token_pair_rotated",
            subject_id=claims.subject_id,
            old_token_id=claims.token_id,
            pair_id=pair.pair_id,
        )
        return pair

    async def revoke_pair(
        self,
        access_token: str | None = None,
        refresh_token: str | None = None,
        reason: RevocationReason | str = RevocationReason.LOGOUT,
        *,
        cascade: bool = False,
    ) -> PairRevocation:
        """Revoke each side of a pair independently (logout)."""
        access_revoked = False
        refresh_revoked = False
        if access_token:
            access_revoked = await self._revocations.revoke(access_token, reason)
        if refresh_token:
            refresh_revoked = await self._revocations.revoke(refresh_token, reason)
        if cascade:
            await self._cascade(refresh_token or access_token, reason)
        return PairRevocation(
            access_revoked=access_revoked, refresh_revoked=refresh_revoked
        )

    async def revoke_token(
        self,
        token: str,
        reason: RevocationReason | str = RevocationReason.MANUAL_REVOKE,
    ) -> bool:
        """Revoke a single token, whatever its type."""
        return await self._revocations.revoke(token, reason)

    def rotate_keys(self) -> SigningKey:
        """Force a signing key rotation."""
        return self._key_store.rotate()

    def key_status(self) -> KeyStoreStatus:
        return self._key_store.status()

    async def _cascade(
        self, token: str | None, reason: RevocationReason | str
    ) -> None:
        if not token:
            return
        try:
            claims = self._verifier.verify(token)
        except CredentialError as exc:
            logger.info("cascade_skipped", reason=exc.reason.value)
            return
        if claims.pair_id is None:
            return
        ttl = int(self._issuer.refresh_ttl.total_seconds())
        await self._revocations.revoke_pair_id(claims.pair_id, reason, ttl)
