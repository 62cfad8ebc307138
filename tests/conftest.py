"""Shared test fixtures for tokenkeep."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from tests.fakes import INTERNAL_TOKEN, PRIMARY_SECRET, FakeClock
from tokenkeep.core.app import create_app
from tokenkeep.core.container import Container, build_container
from tokenkeep.core.settings import AuthSettings


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Set environment variables for test settings."""
    monkeypatch.setenv("AUTH_JWT_SECRET", PRIMARY_SECRET)
    monkeypatch.setenv("AUTH_KEY_FILE", str(tmp_path / "jwt-keys.json"))
    monkeypatch.setenv("AUTH_INTERNAL_TOKEN", INTERNAL_TOKEN)
    monkeypatch.setenv("AUTH_ROTATION_GRACE_SECONDS", "10")
    monkeypatch.delenv("AUTH_JWT_FALLBACK_SECRET", raising=False)
    monkeypatch.delenv("AUTH_REVOCATION_BACKEND", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings()


@pytest.fixture
def container(settings: AuthSettings, clock: FakeClock) -> Container:
    return build_container(settings, clock=clock)


@pytest.fixture
async def client(container: Container) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client bound to a freshly built container."""
    app = create_app(container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {INTERNAL_TOKEN}"}
