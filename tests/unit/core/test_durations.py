"""Tests for duration string parsing."""

from datetime import timedelta

import pytest

from tokenkeep.core.durations import parse_duration, to_seconds


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("30s", timedelta(seconds=30)),
            ("60m", timedelta(minutes=60)),
            ("24h", timedelta(hours=24)),
            ("7d", timedelta(days=7)),
            ("7D", timedelta(days=7)),
            (" 15m ", timedelta(minutes=15)),
        ],
    )
    def test_units(self, value: str, expected: timedelta) -> None:
        assert parse_duration(value) == expected

    def test_bare_integer_is_seconds(self) -> None:
        assert parse_duration("90") == timedelta(seconds=90)
        assert parse_duration(90) == timedelta(seconds=90)

    @pytest.mark.parametrize("value", ["", "abc", "7w", "d", "1.5h", "-5m"])
    def test_unparseable_falls_back_to_one_hour(self, value: str) -> None:
        assert parse_duration(value) == timedelta(hours=1)

    def test_timedelta_passes_through(self) -> None:
        assert parse_duration(timedelta(minutes=5)) == timedelta(minutes=5)


def test_to_seconds_truncates() -> None:
    assert to_seconds(timedelta(seconds=61.9)) == 61
