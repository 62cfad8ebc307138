"""Composition root: builds and wires every credential component once."""

from pydantic import BaseModel, ConfigDict

from tokenkeep.auth.service import CredentialService
from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.settings import AuthSettings, RedisSettings
from tokenkeep.crypto.issuer import TokenIssuer
from tokenkeep.crypto.key_store import KeyStore
from tokenkeep.crypto.verifier import TokenVerifier
from tokenkeep.revocation.store import RevocationStore


class Container(BaseModel):
    """Explicitly constructed components shared by the whole process."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    settings: AuthSettings
    key_store: KeyStore
    issuer: TokenIssuer
    verifier: TokenVerifier
    revocations: RevocationStore
    service: CredentialService


def build_container(
    settings: AuthSettings,
    redis_settings: RedisSettings | None = None,
    clock: Clock = utc_now,
) -> Container:
    """Load keys and wire issuer, verifier, revocation store and service."""
    key_store = KeyStore.from_settings(settings, clock=clock)
    key_store.load_or_initialize()
    issuer = TokenIssuer.from_settings(key_store, settings, clock)
    verifier = TokenVerifier.from_settings(key_store, settings, clock)
    revocations = RevocationStore.from_settings(settings, redis_settings, clock=clock)
    service = CredentialService(key_store, issuer, verifier, revocations, clock)
    return Container(
        settings=settings,
        key_store=key_store,
        issuer=issuer,
        verifier=verifier,
        revocations=revocations,
        service=service,
    )
