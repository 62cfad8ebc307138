"""Client-facing token endpoints: refresh, logout, and who-am-I."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from tokenkeep.api.schemas import (
    IdentityResponse,
    LogoutPayload,
    LogoutResponse,
    RefreshPayload,
    TokenPairResponse,
)
from tokenkeep.auth.middleware import (
    CurrentIdentity,
    extract_bearer,
    get_credential_service,
)
from tokenkeep.auth.service import CredentialService
from tokenkeep.crypto.types import TokenPair
from tokenkeep.revocation.types import RevocationReason

router = APIRouter(prefix="/auth", tags=["auth"])

Service = Annotated[CredentialService, Depends(get_credential_service)]


def to_pair_response(pair: TokenPair) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.access_ttl_seconds,
        refresh_expires_in=pair.refresh_ttl_seconds,
    )


@router.post("/refresh")
async def refresh(payload: RefreshPayload, service: Service) -> TokenPairResponse:
    """POST /auth/refresh -- exchange a refresh token for a new pair."""
    pair = await service.refresh(payload.refresh_token)
    return to_pair_response(pair)


@router.post("/logout")
async def logout(
    request: Request, payload: LogoutPayload, service: Service
) -> LogoutResponse:
    """POST /auth/logout -- revoke the presented access and refresh tokens."""
    result = await service.revoke_pair(
        access_token=extract_bearer(request),
        refresh_token=payload.refresh_token,
        reason=RevocationReason.LOGOUT,
        cascade=payload.cascade,
    )
    return LogoutResponse(
        access_revoked=result.access_revoked,
        refresh_revoked=result.refresh_revoked,
    )


@router.get("/me")
async def me(identity: CurrentIdentity) -> IdentityResponse:
    """GET /auth/me -- the identity resolved from the access token."""
    return IdentityResponse(
        subject_id=identity.subject_id,
        role=identity.role,
        permissions=identity.permissions,
        expires_at=identity.expires_at,
    )
