"""Tests for authentication, refresh rotation and logout."""

import asyncio
from datetime import UTC, datetime

import pytest

from tests.fakes import FakeClock
from tokenkeep.auth.service import CredentialService
from tokenkeep.core.container import Container, build_container
from tokenkeep.core.errors import (
    MalformedTokenError,
    MissingTokenError,
    TokenExpiredError,
    TokenRevokedError,
    WrongTokenTypeError,
)
from tokenkeep.core.settings import AuthSettings
from tokenkeep.crypto.types import SubjectClaims, TokenType


@pytest.fixture
def service(container: Container) -> CredentialService:
    return container.service


class TestAuthenticate:
    """Tests for authenticate."""

    async def test_returns_identity(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1", SubjectClaims(role="admin", permissions=["x"]))
        identity = await service.authenticate(pair.access_token)
        assert identity.subject_id == "user-1"
        assert identity.role == "admin"
        assert identity.permissions == ["x"]
        assert identity.pair_id == pair.pair_id

    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, service: CredentialService, token: str | None) -> None:
        with pytest.raises(MissingTokenError):
            await service.authenticate(token)

    async def test_refresh_token_is_not_accepted(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        with pytest.raises(WrongTokenTypeError):
            await service.authenticate(pair.refresh_token)

    async def test_malformed(self, service: CredentialService) -> None:
        with pytest.raises(MalformedTokenError):
            await service.authenticate("definitely.not.valid")

    async def test_revoked_access_token(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        await service.revoke_token(pair.access_token)
        with pytest.raises(TokenRevokedError):
            await service.authenticate(pair.access_token)

    async def test_survives_key_rotation(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        service.rotate_keys()
        identity = await service.authenticate(pair.access_token)
        assert identity.subject_id == "user-1"


class TestRefresh:
    """Tests for refresh rotation."""

    async def test_rotates_pair(
        self, service: CredentialService, container: Container
    ) -> None:
        first = service.issue_pair("u1")
        second = await service.refresh(first.refresh_token)
        assert second.pair_id != first.pair_id
        assert second.refresh_token != first.refresh_token

        revocations = container.revocations
        assert await revocations.is_revoked(first.refresh_token) is False
        assert (
            await revocations.is_revoked(first.refresh_token, ignore_grace_period=True)
            is True
        )
        claims = container.verifier.verify(second.access_token, TokenType.ACCESS)
        assert claims.subject_id == "u1"

    async def test_reuse_after_grace_is_rejected(
        self, service: CredentialService, clock: FakeClock
    ) -> None:
        first = service.issue_pair("user-1")
        await service.refresh(first.refresh_token)
        clock.advance(seconds=11)
        with pytest.raises(TokenRevokedError):
            await service.refresh(first.refresh_token)

    async def test_repeated_refresh_does_not_extend_grace(
        self, service: CredentialService, clock: FakeClock
    ) -> None:
        first = service.issue_pair("user-1")
        await service.refresh(first.refresh_token)
        clock.advance(seconds=9)
        await service.refresh(first.refresh_token)
        clock.advance(seconds=2)
        with pytest.raises(TokenRevokedError):
            await service.refresh(first.refresh_token)
        assert await service.revocations.is_revoked(first.refresh_token) is True

    async def test_lifecycle_follows_injected_clock(self, settings: AuthSettings) -> None:
        clock = FakeClock(datetime(2025, 1, 1, tzinfo=UTC))
        container = build_container(settings, clock=clock)
        service = container.service
        first = service.issue_pair("user-1")
        rotated = await service.refresh(first.refresh_token)
        clock.advance(seconds=11)
        assert await container.revocations.is_revoked(first.refresh_token) is True
        identity = await service.authenticate(rotated.access_token)
        assert identity.expires_at == datetime(2025, 1, 1, 1, 0, tzinfo=UTC)
        clock.advance(hours=1)
        with pytest.raises(TokenExpiredError):
            await service.authenticate(rotated.access_token)

    async def test_concurrent_refresh_within_grace(
        self, service: CredentialService
    ) -> None:
        first = service.issue_pair("user-1")
        results = await asyncio.gather(
            service.refresh(first.refresh_token),
            service.refresh(first.refresh_token),
        )
        assert results[0].pair_id != results[1].pair_id
        for pair in results:
            identity = await service.authenticate(pair.access_token)
            assert identity.subject_id == "user-1"

    async def test_access_token_cannot_refresh(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        with pytest.raises(WrongTokenTypeError):
            await service.refresh(pair.access_token)

    async def test_missing_refresh_token(self, service: CredentialService) -> None:
        with pytest.raises(MissingTokenError):
            await service.refresh(None)

    async def test_logged_out_refresh_token(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        await service.revoke_pair(refresh_token=pair.refresh_token)
        with pytest.raises(TokenRevokedError):
            await service.refresh(pair.refresh_token)

    async def test_carries_and_overrides_claims(self, service: CredentialService) -> None:
        first = service.issue_pair("user-1", SubjectClaims(role="member", permissions=["a"]))
        carried = await service.refresh(first.refresh_token)
        identity = await service.authenticate(carried.access_token)
        assert identity.role == "member"
        assert identity.permissions == ["a"]

        promoted = await service.refresh(
            carried.refresh_token, SubjectClaims(role="admin")
        )
        identity = await service.authenticate(promoted.access_token)
        assert identity.role == "admin"
        assert identity.permissions == ["a"]


class TestRevokePair:
    """Tests for logout."""

    async def test_revokes_both_sides(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        result = await service.revoke_pair(pair.access_token, pair.refresh_token)
        assert result.access_revoked is True
        assert result.refresh_revoked is True
        with pytest.raises(TokenRevokedError):
            await service.authenticate(pair.access_token)
        with pytest.raises(TokenRevokedError):
            await service.refresh(pair.refresh_token)

    async def test_sides_are_independent(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        result = await service.revoke_pair(refresh_token=pair.refresh_token)
        assert result.access_revoked is False
        identity = await service.authenticate(pair.access_token)
        assert identity.subject_id == "user-1"

    async def test_cascade_revokes_sibling(self, service: CredentialService) -> None:
        pair = service.issue_pair("user-1")
        other = service.issue_pair("user-1")
        await service.revoke_pair(refresh_token=pair.refresh_token, cascade=True)
        with pytest.raises(TokenRevokedError):
            await service.authenticate(pair.access_token)
        identity = await service.authenticate(other.access_token)
        assert identity.pair_id == other.pair_id

    async def test_nothing_to_revoke(self, service: CredentialService) -> None:
        result = await service.revoke_pair()
        assert result.access_revoked is False
        assert result.refresh_revoked is False


class TestKeys:
    """Tests for key administration through the service."""

    def test_rotate_and_status(self, service: CredentialService) -> None:
        before = service.key_status()
        key = service.rotate_keys()
        after = service.key_status()
        assert after.current_key_id == key.id
        assert after.current_key_id != before.current_key_id
        assert after.total_key_count == before.total_key_count + 1
