"""Operator-friendly duration strings ("60m", "7d") parsed into timedeltas."""

import re
from datetime import timedelta
from typing import Annotated

from pydantic import BeforeValidator

DEFAULT_DURATION_SECONDS = 3600

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

_DURATION_RE = re.compile(r"^(\d+)([a-zA-Z]?)$")


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """Parse a duration string with a single trailing unit letter.

    A bare integer is seconds. An unknown unit, a missing number or an
    unparseable string falls back to one hour.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        return timedelta(seconds=DEFAULT_DURATION_SECONDS)
    if isinstance(value, int | float):
        return timedelta(seconds=value)

    match = _DURATION_RE.match(value.strip())
    if match is None:
        return timedelta(seconds=DEFAULT_DURATION_SECONDS)
    amount, unit = match.groups()
    if not unit:
        return timedelta(seconds=int(amount))
    multiplier = _UNIT_SECONDS.get(unit.lower())
    if multiplier is None:
        return timedelta(seconds=DEFAULT_DURATION_SECONDS)
    return timedelta(seconds=int(amount) * multiplier)


def to_seconds(value: timedelta) -> int:
    """Whole seconds of a duration."""
    return int(value.total_seconds())


Duration = Annotated[timedelta, BeforeValidator(parse_duration)]
