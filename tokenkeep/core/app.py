"""FastAPI application factory for the tokenkeep credential service."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tokenkeep.api.router_admin import router as admin_router
from tokenkeep.api.router_internal import router as internal_router
from tokenkeep.auth.middleware import credential_error_handler
from tokenkeep.auth.routes import router as auth_router
from tokenkeep.core.container import Container, build_container
from tokenkeep.core.errors import CredentialError
from tokenkeep.core.logging import configure_logging
from tokenkeep.core.settings import AuthSettings


def create_app(
    settings: AuthSettings | None = None,
    container: Container | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application."""
    if container is not None:
        settings = container.settings
    settings = settings or AuthSettings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    if container is None:
        container = build_container(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await container.revocations.initialize()
        try:
            yield
        finally:
            await container.revocations.close()

    app = FastAPI(
        title="tokenkeep credential service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    origins = settings.get_cors_origin_list()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.add_exception_handler(CredentialError, credential_error_handler)
    app.include_router(internal_router)
    app.include_router(auth_router)
    app.include_router(admin_router)

    return app
