"""Internal endpoints called by the login controller and health checks."""

from typing import Annotated

from fastapi import APIRouter, Depends

from tokenkeep.api.deps import get_container, require_internal_token
from tokenkeep.api.schemas import HealthResponse, IssueTokensPayload, TokenPairResponse
from tokenkeep.auth.routes import to_pair_response
from tokenkeep.core.container import Container
from tokenkeep.crypto.types import SubjectClaims

router = APIRouter(tags=["internal"])

InternalToken = Annotated[str, Depends(require_internal_token)]
AppContainer = Annotated[Container, Depends(get_container)]


@router.post("/internal/tokens")
async def issue_tokens(
    payload: IssueTokensPayload,
    container: AppContainer,
    _token: InternalToken,
) -> TokenPairResponse:
    """POST /internal/tokens -- mint a pair for a freshly logged-in subject."""
    pair = container.service.issue_pair(
        payload.subject_id,
        SubjectClaims(role=payload.role, permissions=payload.permissions),
    )
    return to_pair_response(pair)


@router.get("/health")
async def health(container: AppContainer) -> HealthResponse:
    """GET /health -- liveness plus revocation backend state."""
    revocations = container.revocations
    return HealthResponse(
        revocation_backend=revocations.backend_name,
        degraded=revocations.degraded,
    )
