"""Request-boundary authentication for FastAPI routes."""

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from starlette.responses import JSONResponse

from tokenkeep.auth.service import CredentialService, Identity
from tokenkeep.core.errors import CredentialError

BEARER_PREFIX = "Bearer "


def extract_bearer(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith(BEARER_PREFIX):
        return auth[len(BEARER_PREFIX) :].strip() or None
    return None


def get_credential_service(request: Request) -> CredentialService:
    """The service instance owned by the application container."""
    return request.app.state.container.service


class AuthMiddleware:
    """Dependency that authenticates the request and stores the identity.

    Failures raise CredentialError, which ``credential_error_handler``
    renders, so the protected handler never runs.
    """

    async def __call__(
        self,
        request: Request,
        service: Annotated[CredentialService, Depends(get_credential_service)],
    ) -> Identity:
        identity = await service.authenticate(extract_bearer(request))
        request.state.identity = identity
        return identity


authenticate_request = AuthMiddleware()

CurrentIdentity = Annotated[Identity, Depends(authenticate_request)]


def require_role(*roles: str) -> Callable[..., Awaitable[Identity]]:
    """Build a dependency that also demands one of ``roles``."""

    async def _check(identity: CurrentIdentity) -> Identity:
        if identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "forbidden", "error_description": "Insufficient role"},
            )
        return identity

    return _check


async def credential_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Map a CredentialError to its client-facing status and body."""
    if not isinstance(exc, CredentialError):
        raise exc
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=headers)
