"""Utility modules."""

from app.utils.normalization import (
    EmailParts,
    normalize_email,
    split_email_address,
)
from app.utils.pagination import (
    CursorPage,
    CursorParams,
    decode_cursor,
    encode_cursor,
    get_cursor_params,
)
from app.utils.public_ids import generate_public_id, is_valid_public_id

__all__ = [
    # Normalization
    "EmailParts",
    "normalize_email",
    "split_email_address",
    # Pagination
    "CursorPage",
    "CursorParams",
    "decode_cursor",
    "encode_cursor",
    "get_cursor_params",
    # Public ids
    "generate_public_id",
    "is_valid_public_id",
]
