"""Cursor pagination utilities for list endpoints."""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, TypeVar

from fastapi import Query

from app.core.errors import ValidationError


T = TypeVar("T")

# Pagination limits
DEFAULT_LIMIT = 15
MAX_LIMIT = 100


@dataclass
class CursorParams:
    """Cursor parameters from query string."""
    cursor: str | None
    limit: int


def get_cursor_params(
    cursor: str | None = Query(None, description="Opaque cursor from the previous page"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description=f"Items per page (max {MAX_LIMIT})"),
) -> CursorParams:
    """
    Cursor pagination dependency.

    Usage:
        @router.get("/items")
        def list_items(page: CursorParams = Depends(get_cursor_params)):
            ...
    """
    return CursorParams(cursor=cursor, limit=limit)


@dataclass
class CursorPage(Generic[T]):
    """One page of newest-first results."""
    items: list[T]
    next_cursor: str | None


def encode_cursor(*, sort_ts: datetime, row_id: int) -> str:
    payload = {"sort_ts": sort_ts.isoformat(), "id": row_id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("utf-8")


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    """Decode a cursor; malformed input is a caller error."""
    try:
        decoded = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
        payload = json.loads(decoded)
        sort_ts = datetime.fromisoformat(payload["sort_ts"])
        row_id = int(payload["id"])
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise ValidationError("Invalid cursor") from exc
    if sort_ts.tzinfo is None:
        sort_ts = sort_ts.replace(tzinfo=timezone.utc)
    return sort_ts, row_id
