"""Tests for cursor encoding."""

from datetime import datetime, timezone

import pytest

from app.core.errors import ValidationError
from app.utils.pagination import decode_cursor, encode_cursor


def test_cursor_round_trip_keeps_timezone():
    ts = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
    assert decode_cursor(encode_cursor(sort_ts=ts, row_id=42)) == (ts, 42)


@pytest.mark.parametrize("cursor", ["not-base64!!", "e30=", "eyJzb3J0X3RzIjogIngiLCAiaWQiOiAxfQ=="])
def test_invalid_cursor_is_a_validation_error(cursor):
    with pytest.raises(ValidationError):
        decode_cursor(cursor)
