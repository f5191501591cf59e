from datetime import datetime, timezone

import pytest

from connectors.decoders import (
    ZERO_TIMESTAMP,
    decode_number,
    decode_optional_number,
    decode_timestamp,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("23.4", 23.4),
        (17, 17.0),
        (21.5, 21.5),
        ("-1.25", -1.25),
        ("+3", 3.0),
        (" 101325 ", 101325.0),
        (".5", 0.5),
        ("1e3", 1000.0),
    ],
)
def test_decode_number_accepts_numbers_and_numeric_strings(raw, expected) -> None:
    assert decode_number(raw) == expected


@pytest.mark.parametrize("raw", ["n/a", "", "1,5", "nan", "inf", None, True, [1], {"v": 1}])
def test_decode_number_falls_back_to_zero(raw) -> None:
    assert decode_number(raw) == 0


def test_decode_optional_number_reports_absent_instead_of_zero() -> None:
    assert decode_optional_number("n/a") is None
    assert decode_optional_number("0") == 0.0


def test_decode_timestamp_seconds() -> None:
    decoded = decode_timestamp(1680000000)

    assert decoded == datetime(2023, 3, 28, 10, 40, tzinfo=timezone.utc)


def test_decode_timestamp_milliseconds() -> None:
    decoded = decode_timestamp(1680000000000)

    assert decoded == datetime(2023, 3, 28, 10, 40, tzinfo=timezone.utc)


def test_decode_timestamp_seconds_and_milliseconds_agree_on_instant() -> None:
    assert decode_timestamp(1717582516) == decode_timestamp(1717582516000)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-06-05T10:15:14Z", datetime(2024, 6, 5, 10, 15, 14, tzinfo=timezone.utc)),
        ("2024-06-05 10:15:02", datetime(2024, 6, 5, 10, 15, 2, tzinfo=timezone.utc)),
        ("2024-06-05T12:15:02+02:00", datetime(2024, 6, 5, 10, 15, 2, tzinfo=timezone.utc)),
        (
            "2024-06-05T10:15:03.12Z",
            datetime(2024, 6, 5, 10, 15, 3, 120000, tzinfo=timezone.utc),
        ),
        (
            "2024-06-05 10:15:03.1234567",
            datetime(2024, 6, 5, 10, 15, 3, 123456, tzinfo=timezone.utc),
        ),
    ],
)
def test_decode_timestamp_iso_strings_are_utc(raw, expected) -> None:
    decoded = decode_timestamp(raw)

    assert decoded == expected
    assert decoded.utcoffset().total_seconds() == 0


@pytest.mark.parametrize("raw", ["not a timestamp", "", None, 12.5, False, 10**20])
def test_decode_timestamp_falls_back_to_zero_value(raw) -> None:
    assert decode_timestamp(raw) == ZERO_TIMESTAMP


def test_decode_timestamp_custom_default() -> None:
    assert decode_timestamp("garbage", default=None) is None
