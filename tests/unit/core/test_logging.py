"""Tests for structlog configuration helpers."""

from tokenkeep.core.logging import _redact_secrets, token_preview


class TestRedactSecrets:
    """Tests for the redaction processor."""

    def test_masks_credential_fields(self) -> None:
        event = _redact_secrets(
            None,
            "info",
            {"event": "x", "refresh_token": "abcdefghij", "jwt_secret": "supersecret"},
        )
        assert event["refresh_token"] == "ab***ij"
        assert event["jwt_secret"] == "su***et"

    def test_leaves_metadata_alone(self) -> None:
        event = _redact_secrets(
            None,
            "info",
            {
                "event": "token_revoked",
                "token_type": "refresh",
                "token_id": "0192-abc",
                "token_preview": "eyJhbGciOiJIUzI1NiIs...",
            },
        )
        assert event["token_type"] == "refresh"
        assert event["token_id"] == "0192-abc"
        assert event["token_preview"] == "eyJhbGciOiJIUzI1NiIs..."


def test_token_preview() -> None:
    assert token_preview("x" * 40) == "x" * 20 + "..."
