"""Operator endpoints for key rotation and revocation diagnostics."""

from typing import Annotated

from fastapi import APIRouter, Depends

from tokenkeep.api.schemas import RevokePayload, RotateKeyResponse
from tokenkeep.auth.middleware import get_credential_service, require_role
from tokenkeep.auth.service import CredentialService, Identity
from tokenkeep.crypto.types import KeyStoreStatus
from tokenkeep.revocation.types import RevocationResult, RevocationStats

ADMIN_ROLE = "admin"

router = APIRouter(prefix="/auth", tags=["admin"])

Service = Annotated[CredentialService, Depends(get_credential_service)]
Admin = Annotated[Identity, Depends(require_role(ADMIN_ROLE))]


@router.get("/keys/status")
async def key_status(service: Service, _admin: Admin) -> KeyStoreStatus:
    """GET /auth/keys/status -- current key and key counts."""
    return service.key_status()


@router.post("/keys/rotate")
async def rotate_keys(service: Service, _admin: Admin) -> RotateKeyResponse:
    """POST /auth/keys/rotate -- install a new signing key now."""
    key = service.rotate_keys()
    return RotateKeyResponse(
        key_id=key.id, created_at=key.created_at, expires_at=key.expires_at
    )


@router.get("/revocations/stats")
async def revocation_stats(service: Service, _admin: Admin) -> RevocationStats:
    """GET /auth/revocations/stats -- live revocation record count."""
    return await service.revocations.stats()


@router.post("/revoke")
async def revoke_tokens(
    payload: RevokePayload, service: Service, _admin: Admin
) -> list[RevocationResult]:
    """POST /auth/revoke -- revoke one or more tokens."""
    return await service.revocations.revoke_many(payload.tokens, payload.reason)
