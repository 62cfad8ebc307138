"""HMAC key generation, secret encryption, and the key-file format."""

import json
import os
import secrets
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import uuid_utils
from cryptography.fernet import Fernet, InvalidToken

from tokenkeep.crypto.types import KeySet, KeySource, SigningKey

SECRET_BYTES = 64
MIN_SECRET_BYTES = 32


class KeyFileError(Exception):
    """The key file could not be read, decoded or written."""


def generate_secret() -> str:
    """Generate 512 bits of hex-encoded key material."""
    return secrets.token_hex(SECRET_BYTES)


def generate_key_id() -> str:
    """Generate a time-ordered key identifier."""
    return str(uuid_utils.uuid7())


def encrypt_secret(secret: str, fernet_key: str) -> str:
    """Encrypt a key secret with Fernet for file storage."""
    cipher = Fernet(fernet_key.encode())
    return cipher.encrypt(secret.encode()).decode()


def decrypt_secret(encrypted: str, fernet_key: str) -> str:
    """Decrypt a Fernet-encrypted key secret."""
    cipher = Fernet(fernet_key.encode())
    try:
        return cipher.decrypt(encrypted.encode()).decode()
    except InvalidToken as exc:
        msg = "key secret could not be decrypted"
        raise KeyFileError(msg) from exc


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _encode_key(key: SigningKey, fernet_key: str) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": key.id,
        "secret": key.secret,
        "createdAt": _to_millis(key.created_at),
        "expiresAt": _to_millis(key.expires_at),
        "isActive": key.is_active,
        "source": key.source.value,
    }
    if fernet_key:
        entry["secret"] = encrypt_secret(key.secret, fernet_key)
        entry["encrypted"] = True
    return entry


def _decode_key(entry: dict[str, Any], fernet_key: str) -> SigningKey:
    secret = entry["secret"]
    if entry.get("encrypted"):
        if not fernet_key:
            msg = f"key {entry['id']} is encrypted but no encryption key is set"
            raise KeyFileError(msg)
        secret = decrypt_secret(secret, fernet_key)
    return SigningKey(
        id=entry["id"],
        secret=secret,
        created_at=_from_millis(entry["createdAt"]),
        expires_at=_from_millis(entry["expiresAt"]),
        is_active=bool(entry.get("isActive", False)),
        source=KeySource(entry.get("source", KeySource.GENERATED.value)),
    )


def dump_key_set(
    key_set: KeySet, fernet_key: str = "", updated_at: datetime | None = None
) -> dict[str, Any]:
    """Serialize a key set to the persisted JSON document."""
    return {
        "currentKeyId": key_set.current_key_id,
        "keys": [_encode_key(key, fernet_key) for key in key_set.keys],
        "lastUpdated": _to_millis(updated_at or datetime.now(UTC)),
    }


def load_key_set(document: dict[str, Any], fernet_key: str = "") -> KeySet:
    """Parse the persisted JSON document into a key set."""
    try:
        keys = tuple(_decode_key(entry, fernet_key) for entry in document["keys"])
    except (KeyError, TypeError, ValueError) as exc:
        msg = "malformed key file"
        raise KeyFileError(msg) from exc
    return KeySet(current_key_id=document.get("currentKeyId"), keys=keys)


def read_key_file(path: Path, fernet_key: str = "") -> KeySet | None:
    """Read the key file, or None when it does not exist."""
    if not path.exists():
        return None
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"cannot read key file {path}"
        raise KeyFileError(msg) from exc
    return load_key_set(document, fernet_key)


def write_key_file(
    path: Path,
    key_set: KeySet,
    fernet_key: str = "",
    updated_at: datetime | None = None,
) -> None:
    """Atomically replace the key file with the given key set."""
    document = dump_key_set(key_set, fernet_key, updated_at)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".jwt-keys-")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except OSError as exc:
        msg = f"cannot write key file {path}"
        raise KeyFileError(msg) from exc
