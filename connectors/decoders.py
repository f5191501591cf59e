"""Tolerant converters for loosely typed provider JSON scalars.

Both providers emit numbers as strings now and then, and timestamps as
either ISO-8601 strings or epoch integers in seconds or milliseconds. The
decoders never raise; they fall back to a caller supplied default so that
one odd value cannot sink a whole payload.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, TypeVar, Union

T = TypeVar("T")

ZERO_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# Seconds range that a datetime can represent (years 1 through 9999).
_MIN_EPOCH_SECONDS = -62_135_596_800
_MAX_EPOCH_SECONDS = 253_402_300_799

_NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
# fromisoformat before 3.11 only accepts 3 or 6 fractional digits.
_FRACTION_PATTERN = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")


def decode_timestamp(raw: Any, default: T = ZERO_TIMESTAMP) -> Union[datetime, T]:
    """Decode an ISO-8601 string or an epoch integer into an aware UTC datetime.

    Integers inside the representable seconds range are read as seconds,
    anything else as milliseconds. Unparsable input yields ``default``.
    """
    if isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return _from_epoch(raw, default)
    if isinstance(raw, str):
        return _from_iso(raw, default)
    return default


def decode_number(raw: Any, default: T = 0.0) -> Union[float, T]:
    """Decode a JSON number or an invariant-formatted numeric string.

    ``"23.4"`` and ``23.4`` both decode to ``23.4``; ``"n/a"`` yields ``default``.
    """
    if isinstance(raw, bool):
        return default
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        candidate = raw.strip()
        if _NUMBER_PATTERN.match(candidate):
            return float(candidate)
    return default


def decode_optional_number(raw: Any) -> Optional[float]:
    return decode_number(raw, default=None)


def _from_epoch(value: int, default: T) -> Union[datetime, T]:
    try:
        if _MIN_EPOCH_SECONDS <= value <= _MAX_EPOCH_SECONDS:
            return _EPOCH + timedelta(seconds=value)
        return _EPOCH + timedelta(milliseconds=value)
    except OverflowError:
        return default


def _from_iso(value: str, default: T) -> Union[datetime, T]:
    candidate = value.strip()
    if not candidate:
        return default

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    candidate = _FRACTION_PATTERN.sub(
        lambda match: f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}",
        candidate,
        count=1,
    )

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return default

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)

    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        return default
