"""End-to-end token lifecycle across two service instances sharing Redis."""

from collections.abc import AsyncIterator
from datetime import timedelta

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient

from tests.fakes import FakeClock
from tokenkeep.auth.service import CredentialService
from tokenkeep.core.app import create_app
from tokenkeep.core.container import Container
from tokenkeep.core.settings import AuthSettings
from tokenkeep.crypto.issuer import TokenIssuer
from tokenkeep.crypto.key_store import KeyStore
from tokenkeep.crypto.verifier import TokenVerifier
from tokenkeep.revocation.backends import RedisRevocationBackend
from tokenkeep.revocation.store import RevocationStore


def _container(
    settings: AuthSettings, server: fakeredis.FakeServer, clock: FakeClock
) -> Container:
    key_store = KeyStore.from_settings(settings, clock=clock)
    key_store.load_or_initialize()
    backend = RedisRevocationBackend(
        fakeredis.FakeAsyncRedis(server=server, decode_responses=True),
        timeout=1.0,
        clock=clock,
    )
    revocations = RevocationStore(
        backend,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
        rotation_grace=timedelta(seconds=settings.rotation_grace_seconds),
        clock=clock,
    )
    issuer = TokenIssuer.from_settings(key_store, settings, clock)
    verifier = TokenVerifier.from_settings(key_store, settings, clock)
    return Container(
        settings=settings,
        key_store=key_store,
        issuer=issuer,
        verifier=verifier,
        revocations=revocations,
        service=CredentialService(key_store, issuer, verifier, revocations, clock),
    )


@pytest.fixture
def server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
async def nodes(
    settings: AuthSettings, server: fakeredis.FakeServer, clock: FakeClock
) -> AsyncIterator[tuple[AsyncClient, AsyncClient]]:
    """Two apps sharing one key file and one Redis server."""
    first = _container(settings, server, clock)
    second = _container(settings, server, clock)
    async with (
        AsyncClient(
            transport=ASGITransport(app=create_app(container=first)),
            base_url="http://node-a",
        ) as node_a,
        AsyncClient(
            transport=ASGITransport(app=create_app(container=second)),
            base_url="http://node-b",
        ) as node_b,
    ):
        yield node_a, node_b


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def test_full_lifecycle(
    nodes: tuple[AsyncClient, AsyncClient],
    internal_headers: dict[str, str],
    clock: FakeClock,
) -> None:
    node_a, node_b = nodes

    # Login on node A
    resp = await node_a.post(
        "/internal/tokens",
        json={"subject_id": "u1", "role": "admin"},
        headers=internal_headers,
    )
    assert resp.status_code == 200
    login = resp.json()

    # Node B accepts it: both loaded the same key file
    me = await node_b.get("/auth/me", headers=_bearer(login["access_token"]))
    assert me.status_code == 200
    assert me.json()["subject_id"] == "u1"

    # Refresh on node B
    resp = await node_b.post(
        "/auth/refresh", json={"refresh_token": login["refresh_token"]}
    )
    assert resp.status_code == 200
    rotated = resp.json()

    # Node A sees the rotation once the grace window has closed
    clock.advance(seconds=11)
    resp = await node_a.post(
        "/auth/refresh", json={"refresh_token": login["refresh_token"]}
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "token_revoked"

    # Logout on node A is enforced on node B
    resp = await node_a.post(
        "/auth/logout",
        json={"refresh_token": rotated["refresh_token"]},
        headers=_bearer(rotated["access_token"]),
    )
    assert resp.json() == {"access_revoked": True, "refresh_revoked": True}
    me = await node_b.get("/auth/me", headers=_bearer(rotated["access_token"]))
    assert me.status_code == 403

    stats = await node_b.get(
        "/auth/revocations/stats", headers=_bearer(login["access_token"])
    )
    assert stats.status_code == 200
    assert stats.json()["backend"] == "redis"
    assert stats.json()["revoked_count"] == 3


async def test_rotation_keeps_sessions(
    nodes: tuple[AsyncClient, AsyncClient],
    internal_headers: dict[str, str],
) -> None:
    node_a, _ = nodes
    resp = await node_a.post(
        "/internal/tokens",
        json={"subject_id": "ops", "role": "admin"},
        headers=internal_headers,
    )
    before = resp.json()

    resp = await node_a.post("/auth/keys/rotate", headers=_bearer(before["access_token"]))
    assert resp.status_code == 200

    me = await node_a.get("/auth/me", headers=_bearer(before["access_token"]))
    assert me.status_code == 200
    resp = await node_a.post(
        "/auth/refresh", json={"refresh_token": before["refresh_token"]}
    )
    assert resp.status_code == 200
