"""FastAPI dependency injection for internal API authentication."""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tokenkeep.core.container import Container

_security = HTTPBearer(auto_error=False)


def get_container(request: Request) -> Container:
    return request.app.state.container


async def require_internal_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_security)],
    container: Annotated[Container, Depends(get_container)],
) -> str:
    """Verify the service-to-service bearer token used by the login controller."""
    expected = container.settings.internal_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if credentials is None or not secrets.compare_digest(
        credentials.credentials, expected
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return credentials.credentials
