"""Token revocation with rotation grace and local fallback."""

from datetime import datetime, timedelta
from typing import Any

import jwt

from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.logging import get_logger, token_preview
from tokenkeep.core.settings import AuthSettings, RedisSettings
from tokenkeep.revocation.backends import (
    MemoryRevocationBackend,
    RedisRevocationBackend,
    RevocationBackend,
    RevocationBackendError,
)
from tokenkeep.revocation.types import (
    RevocationReason,
    RevocationRecord,
    RevocationResult,
    RevocationStats,
)

logger = get_logger(__name__)


def _token_key(token_id: str) -> str:
    return f"token:{token_id}"


def _pair_key(pair_id: str) -> str:
    return f"pair:{pair_id}"


def unverified_claims(token: str) -> dict[str, Any] | None:
    """Decode a token payload without checking its signature."""
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None


class RevocationStore:
    """Records and answers "has this token been invalidated early?".

    When a shared backend is configured, every record is also written to a
    local backend. If the shared backend fails, lookups fall back to the local
    one until ``reconnect_interval`` has passed.
    """

    def __init__(
        self,
        backend: RevocationBackend,
        *,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        rotation_grace: timedelta,
        local: MemoryRevocationBackend | None = None,
        enabled: bool = True,
        check_enabled: bool = True,
        reconnect_interval: float = 30.0,
        clock: Clock = utc_now,
    ) -> None:
        if isinstance(backend, MemoryRevocationBackend):
            self._local = backend
            self._shared: RevocationBackend | None = None
        else:
            self._local = local or MemoryRevocationBackend(clock)
            self._shared = backend
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._rotation_grace = rotation_grace
        self._enabled = enabled
        self._check_enabled = check_enabled
        self._reconnect_interval = timedelta(seconds=reconnect_interval)
        self._clock = clock
        self._degraded_until: datetime | None = None

    @classmethod
    def from_settings(
        cls,
        settings: AuthSettings,
        redis_settings: RedisSettings | None = None,
        clock: Clock = utc_now,
    ) -> "RevocationStore":
        redis_settings = redis_settings or RedisSettings()
        backend: RevocationBackend
        if settings.revocation_backend == "redis":
            backend = RedisRevocationBackend.from_settings(redis_settings)
        else:
            backend = MemoryRevocationBackend(clock)
        return cls(
            backend,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            rotation_grace=timedelta(seconds=settings.rotation_grace_seconds),
            enabled=settings.revocation_enabled,
            check_enabled=settings.revocation_check_enabled,
            reconnect_interval=redis_settings.reconnect_interval,
            clock=clock,
        )

    @property
    def backend_name(self) -> str:
        return (self._shared or self._local).name

    @property
    def degraded(self) -> bool:
        return self._degraded_until is not None

    async def initialize(self) -> None:
        """Ping the shared backend; start degraded if it is unreachable."""
        if self._shared is None:
            return
        try:
            await self._shared.ping()
        except RevocationBackendError as exc:
            self._mark_degraded(exc)
        else:
            logger.info("revocation_backend_connected", backend=self._shared.name)

    async def close(self) -> None:
        if self._shared is not None:
            await self._shared.close()
        await self._local.close()

    async def revoke(
        self,
        token: str,
        reason: RevocationReason | str = RevocationReason.MANUAL_REVOKE,
        ttl_seconds: int | None = None,
    ) -> bool:
        """Record a token as revoked. Returns False if nothing was recorded."""
        if not self._enabled:
            logger.debug("revocation_disabled")
            return False
        reason = RevocationReason(reason)
        payload = unverified_claims(token)
        token_id = payload.get("jti") if payload else None
        if not token_id:
            logger.error("revocation_token_id_missing", token_preview=token_preview(token))
            return False

        token_type = str(payload.get("type", "unknown"))
        ttl = (
            ttl_seconds
            if ttl_seconds is not None
            else self._default_ttl(token_type, payload)
        )
        record = RevocationRecord(
            token_id=token_id,
            revoked_at=self._clock(),
            reason=reason,
            token_type=token_type,
        )
        if reason is RevocationReason.TOKEN_ROTATED:
            # The grace window runs from the first rotation; replays never reopen it.
            if not await self._add(_token_key(token_id), record, ttl):
                logger.info("rotation_already_recorded", token_id=token_id)
                return True
        else:
            await self._set(_token_key(token_id), record, ttl)
        logger.info(
            "token_revoked",
            token_id=token_id,
            reason=reason.value,
            ttl_seconds=ttl,
            token_type=token_type,
        )
        return True

    async def revoke_pair_id(
        self,
        pair_id: str,
        reason: RevocationReason | str,
        ttl_seconds: int,
    ) -> bool:
        """Revoke every token carrying ``pair_id``."""
        if not self._enabled:
            return False
        reason = RevocationReason(reason)
        record = RevocationRecord(
            token_id=pair_id,
            revoked_at=self._clock(),
            reason=reason,
            token_type="pair",
        )
        await self._set(_pair_key(pair_id), record, ttl_seconds)
        logger.info("pair_revoked", pair_id=pair_id, reason=reason.value)
        return True

    async def revoke_many(
        self,
        tokens: list[str],
        reason: RevocationReason | str = RevocationReason.BULK_REVOKE,
    ) -> list[RevocationResult]:
        """Best-effort batch revoke; one failure never stops the rest."""
        reason = RevocationReason(reason)
        results: list[RevocationResult] = []
        for token in tokens:
            try:
                success = await self.revoke(token, reason)
            except Exception as exc:
                logger.exception("bulk_revoke_item_failed", token_preview=token_preview(token))
                results.append(
                    RevocationResult(
                        token_preview=token_preview(token), success=False, error=str(exc)
                    )
                )
                continue
            results.append(
                RevocationResult(token_preview=token_preview(token), success=success)
            )
        logger.info(
            "bulk_revoke_completed",
            total=len(tokens),
            succeeded=sum(1 for r in results if r.success),
            reason=reason.value,
        )
        return results

    async def is_revoked(self, token: str, ignore_grace_period: bool = False) -> bool:
        """True when the token was revoked, allowing for rotation grace."""
        if not self._check_enabled:
            return False
        payload = unverified_claims(token)
        if not payload or not payload.get("jti"):
            return False
        return await self.is_id_revoked(
            payload["jti"],
            payload.get("pair_id"),
            ignore_grace_period=ignore_grace_period,
        )

    async def is_id_revoked(
        self,
        token_id: str,
        pair_id: str | None = None,
        *,
        ignore_grace_period: bool = False,
    ) -> bool:
        """Same as :meth:`is_revoked` for already-decoded identifiers."""
        if not self._check_enabled:
            return False
        record = await self._get(_token_key(token_id))
        if record is None and pair_id:
            record = await self._get(_pair_key(pair_id))
        if record is None:
            return False
        if record.reason is RevocationReason.TOKEN_ROTATED and not ignore_grace_period:
            elapsed = self._clock() - record.revoked_at
            if elapsed < self._rotation_grace:
                logger.debug(
                    "rotated_token_within_grace",
                    token_id=token_id,
                    elapsed_seconds=elapsed.total_seconds(),
                )
                return False
        return True

    async def stats(self) -> RevocationStats:
        """Count of live records in the backend currently serving reads."""
        count: int | None = None
        shared = self._usable_shared()
        if shared is not None:
            try:
                count = await shared.count()
            except RevocationBackendError as exc:
                self._mark_degraded(exc)
        if count is None:
            count = await self._local.count()
        return RevocationStats(
            revoked_count=count,
            backend=self.backend_name,
            degraded=self.degraded,
            enabled=self._enabled,
            timestamp=self._clock(),
        )

    async def cleanup(self) -> int:
        """Purge expired local records and trim the shared audit set."""
        removed = await self._local.purge_expired()
        shared = self._usable_shared()
        if shared is not None:
            try:
                removed += await shared.purge_expired()
            except RevocationBackendError as exc:
                self._mark_degraded(exc)
        logger.info("revocation_cleanup", removed=removed, backend=self.backend_name)
        return removed

    def _default_ttl(self, token_type: str, payload: dict[str, Any]) -> int:
        default = self._refresh_ttl if token_type == "refresh" else self._access_ttl
        ttl = int(default.total_seconds())
        exp = payload.get("exp")
        if isinstance(exp, int | float):
            remaining = int(exp - self._clock().timestamp())
            ttl = min(ttl, max(1, remaining))
        return ttl

    def _usable_shared(self) -> RevocationBackend | None:
        """The shared backend, unless it failed within the reconnect interval."""
        if self._shared is None:
            return None
        if self._degraded_until is not None and self._clock() < self._degraded_until:
            return None
        return self._shared

    def _mark_degraded(self, exc: Exception) -> None:
        if self._degraded_until is None:
            logger.warning(
                "revocation_backend_degraded",
                backend=self.backend_name,
                error=str(exc),
                fallback=self._local.name,
            )
        self._degraded_until = self._clock() + self._reconnect_interval

    def _mark_healthy(self) -> None:
        if self._degraded_until is not None:
            logger.info("revocation_backend_recovered", backend=self.backend_name)
            self._degraded_until = None

    async def _set(self, key: str, record: RevocationRecord, ttl: int) -> None:
        await self._local.set(key, record, ttl)
        shared = self._usable_shared()
        if shared is None:
            return
        try:
            await shared.set(key, record, ttl)
        except RevocationBackendError as exc:
            self._mark_degraded(exc)
        else:
            self._mark_healthy()

    async def _add(self, key: str, record: RevocationRecord, ttl: int) -> bool:
        added = await self._local.add(key, record, ttl)
        shared = self._usable_shared()
        if shared is None:
            return added
        try:
            added = await shared.add(key, record, ttl)
        except RevocationBackendError as exc:
            self._mark_degraded(exc)
        else:
            self._mark_healthy()
        return added

    async def _get(self, key: str) -> RevocationRecord | None:
        shared = self._usable_shared()
        if shared is not None:
            try:
                record = await shared.get(key)
            except RevocationBackendError as exc:
                self._mark_degraded(exc)
            else:
                self._mark_healthy()
                if record is not None:
                    return record
        return await self._local.get(key)
