"""Signing key lifecycle: seeding, rotation, cleanup and persistence.

Readers work on an immutable :class:`KeySet` snapshot. Writers serialize on a
lock, build a new snapshot and publish it with a single assignment, so a
reader never sees a half-rotated key set.
"""

import math
import threading
from datetime import datetime, timedelta
from pathlib import Path

from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.errors import NoActiveKeyError
from tokenkeep.core.logging import get_logger
from tokenkeep.core.settings import AuthSettings
from tokenkeep.crypto.keys import (
    MIN_SECRET_BYTES,
    KeyFileError,
    generate_key_id,
    generate_secret,
    read_key_file,
    write_key_file,
)
from tokenkeep.crypto.types import (
    CurrentKeySummary,
    KeySet,
    KeySource,
    KeyStoreStatus,
    SigningKey,
)

PRIMARY_KEY_ID = "primary"
FALLBACK_KEY_ID = "fallback"

logger = get_logger(__name__)


class KeyStore:
    """Owns the current signing key and every key still valid for verification."""

    def __init__(
        self,
        *,
        primary_secret: str = "",
        fallback_secret: str | None = None,
        rotation_interval: timedelta,
        grace_period: timedelta,
        key_file: Path | None = None,
        encryption_key: str = "",
        clock: Clock = utc_now,
    ) -> None:
        self._primary_secret = primary_secret
        self._fallback_secret = fallback_secret
        self._rotation_interval = rotation_interval
        self._grace_period = grace_period
        self._key_file = key_file
        self._encryption_key = encryption_key
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = KeySet()
        self._dirty = False
        self._last_persisted_at: datetime | None = None

    @classmethod
    def from_settings(cls, settings: AuthSettings, clock: Clock = utc_now) -> "KeyStore":
        return cls(
            primary_secret=settings.jwt_secret,
            fallback_secret=settings.jwt_fallback_secret,
            rotation_interval=settings.key_rotation_interval,
            grace_period=settings.key_grace_period,
            key_file=settings.key_file,
            encryption_key=settings.signing_key_encryption_key,
            clock=clock,
        )

    @property
    def snapshot(self) -> KeySet:
        """The currently published key set."""
        return self._snapshot

    @property
    def grace_period(self) -> timedelta:
        return self._grace_period

    def generate_key(self) -> SigningKey:
        """Create a new active key valid for one rotation interval."""
        now = self._clock()
        return SigningKey(
            id=generate_key_id(),
            secret=generate_secret(),
            created_at=now,
            expires_at=now + self._rotation_interval,
            is_active=True,
        )

    def load_or_initialize(self) -> None:
        """Load persisted keys, or seed them from configuration on first run."""
        with self._lock:
            try:
                persisted = (
                    read_key_file(self._key_file, self._encryption_key)
                    if self._key_file is not None
                    else None
                )
            except KeyFileError as exc:
                # Keep the unreadable file for the operator; the next
                # rotation overwrites it.
                logger.error("key_store_load_failed", error=str(exc))
                self._publish(self._seed())
                self._dirty = True
                return

            if persisted is None:
                self._publish(self._seed())
                self._persist_locked()
                return

            key_set, changed = self._reconcile(persisted)
            self._publish(key_set)
            if changed:
                self._persist_locked()
            logger.info(
                "key_store_loaded",
                key_count=len(key_set.keys),
                current_key_id=key_set.current_key_id,
            )

    def current_key(self) -> SigningKey:
        """Return the signing key, rotating first if it has expired."""
        key = self._snapshot.current
        if key is None:
            raise NoActiveKeyError("no active signing key is configured")
        if key.expires_at <= self._clock():
            return self._rotate_expired(key.id)
        return key

    def rotate(self) -> SigningKey:
        """Install a new current key and demote the previous one."""
        with self._lock:
            return self._rotate_locked()

    def cleanup(self) -> list[str]:
        """Drop generated keys whose verification window has closed."""
        with self._lock:
            kept, removed = self._partition(
                self._snapshot.keys, self._snapshot.current_key_id
            )
            if removed:
                self._publish(
                    KeySet(current_key_id=self._snapshot.current_key_id, keys=kept)
                )
                self._persist_locked()
            return removed

    def verification_keys(self) -> list[SigningKey]:
        """Current key first, then every other key still inside its window."""
        snapshot = self._snapshot
        now = self._clock()
        current = snapshot.current
        ordered: list[SigningKey] = []
        if current is not None and current.verifiable_at(now, self._grace_period):
            ordered.append(current)
        others = sorted(
            (
                key
                for key in snapshot.keys
                if key is not current and key.verifiable_at(now, self._grace_period)
            ),
            key=lambda key: key.created_at,
            reverse=True,
        )
        ordered.extend(others)
        return ordered

    def status(self) -> KeyStoreStatus:
        """Read-only summary; never rotates."""
        snapshot = self._snapshot
        now = self._clock()
        current = snapshot.current
        summary = None
        if current is not None:
            remaining = (current.expires_at - now).total_seconds()
            summary = CurrentKeySummary(
                id=current.id,
                created_at=current.created_at,
                expires_at=current.expires_at,
                days_until_expiration=math.ceil(remaining / 86400),
            )
        return KeyStoreStatus(
            current_key_id=snapshot.current_key_id,
            current_key=summary,
            verification_key_count=len(self.verification_keys()),
            total_key_count=len(snapshot.keys),
            rotation_interval_seconds=int(self._rotation_interval.total_seconds()),
            grace_period_seconds=int(self._grace_period.total_seconds()),
            last_persisted_at=self._last_persisted_at,
        )

    def persist(self) -> bool:
        """Retry a write that failed earlier. Returns True when the file is current."""
        with self._lock:
            if not self._dirty:
                return True
            return self._persist_locked()

    def _rotate_expired(self, expired_id: str) -> SigningKey:
        with self._lock:
            current = self._snapshot.current
            # Another caller may have rotated while we waited for the lock.
            if current is not None and (
                current.id != expired_id or current.expires_at > self._clock()
            ):
                return current
            logger.info("key_expired", key_id=expired_id)
            return self._rotate_locked()

    def _rotate_locked(self) -> SigningKey:
        new_key = self.generate_key()
        previous_id = self._snapshot.current_key_id
        demoted = tuple(
            key.model_copy(update={"is_active": False}) if key.is_active else key
            for key in self._snapshot.keys
        )
        kept, removed = self._partition(demoted, new_key.id)
        self._publish(KeySet(current_key_id=new_key.id, keys=(*kept, new_key)))
        self._persist_locked()
        logger.info(
            "key_rotated",
            new_key_id=new_key.id,
            old_key_id=previous_id,
            purged_key_ids=removed,
        )
        return new_key

    def _partition(
        self, keys: tuple[SigningKey, ...], current_id: str | None
    ) -> tuple[tuple[SigningKey, ...], list[str]]:
        now = self._clock()
        kept: list[SigningKey] = []
        removed: list[str] = []
        for key in keys:
            purgeable = (
                key.source is KeySource.GENERATED
                and key.id != current_id
                and key.expires_at + self._grace_period < now
            )
            if purgeable:
                removed.append(key.id)
            else:
                kept.append(key)
        return tuple(kept), removed

    def _configured_primary(self, now: datetime) -> SigningKey | None:
        if not self._primary_secret:
            return None
        if len(self._primary_secret.encode()) < MIN_SECRET_BYTES:
            logger.warning("weak_primary_secret", min_bytes=MIN_SECRET_BYTES)
        return SigningKey(
            id=PRIMARY_KEY_ID,
            secret=self._primary_secret,
            created_at=now,
            expires_at=now + self._rotation_interval,
            is_active=True,
            source=KeySource.CONFIGURED,
        )

    def _configured_fallback(self, now: datetime) -> SigningKey | None:
        if not self._fallback_secret or self._fallback_secret == self._primary_secret:
            return None
        half = self._rotation_interval / 2
        return SigningKey(
            id=FALLBACK_KEY_ID,
            secret=self._fallback_secret,
            created_at=now - half,
            expires_at=now + half,
            is_active=False,
            source=KeySource.CONFIGURED,
        )

    def _seed(self) -> KeySet:
        now = self._clock()
        keys = [
            key
            for key in (self._configured_primary(now), self._configured_fallback(now))
            if key is not None
        ]
        if not keys:
            logger.error("no_primary_secret_configured")
        current_id = PRIMARY_KEY_ID if self._primary_secret else None
        return KeySet(current_key_id=current_id, keys=tuple(keys))

    def _reconcile(self, persisted: KeySet) -> tuple[KeySet, bool]:
        """Merge persisted keys with the configured secrets."""
        now = self._clock()
        keys = list(persisted.keys)
        current_id = persisted.current_key_id
        changed = False

        stored_primary = persisted.get(PRIMARY_KEY_ID)
        configured = self._configured_primary(now)
        if configured is not None and (
            stored_primary is None or stored_primary.secret != self._primary_secret
        ):
            # The operator replaced the primary secret: it becomes current,
            # and the old one is kept under a new id for verification.
            keys = [
                key.model_copy(update={"is_active": False}) if key.is_active else key
                for key in keys
                if key.id != PRIMARY_KEY_ID
            ]
            if stored_primary is not None:
                keys.append(
                    stored_primary.model_copy(
                        update={
                            "id": f"{PRIMARY_KEY_ID}-{int(stored_primary.created_at.timestamp())}",
                            "is_active": False,
                            "expires_at": min(stored_primary.expires_at, now),
                            "source": KeySource.GENERATED,
                        }
                    )
                )
            keys.append(configured)
            current_id = PRIMARY_KEY_ID
            changed = True
            logger.info("primary_secret_changed")

        stored_fallback = persisted.get(FALLBACK_KEY_ID)
        fallback = self._configured_fallback(now)
        if fallback is None and stored_fallback is not None:
            keys = [key for key in keys if key.id != FALLBACK_KEY_ID]
            changed = True
        elif fallback is not None and (
            stored_fallback is None or stored_fallback.secret != fallback.secret
        ):
            keys = [key for key in keys if key.id != FALLBACK_KEY_ID]
            keys.append(fallback)
            changed = True

        return KeySet(current_key_id=current_id, keys=tuple(keys)), changed

    def _publish(self, key_set: KeySet) -> None:
        self._snapshot = key_set

    def _persist_locked(self) -> bool:
        if self._key_file is None:
            return True
        try:
            write_key_file(
                self._key_file, self._snapshot, self._encryption_key, self._clock()
            )
        except KeyFileError as exc:
            self._dirty = True
            logger.error("key_store_save_failed", error=str(exc))
            return False
        self._dirty = False
        self._last_persisted_at = self._clock()
        logger.info("key_store_saved", key_count=len(self._snapshot.keys))
        return True
