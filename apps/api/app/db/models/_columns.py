"""Column helpers shared by every model module."""

from __future__ import annotations

from functools import partial

from sqlalchemy import Integer, String
from sqlalchemy.orm import mapped_column

from app.db.types import utc_now
from app.utils.public_ids import generate_public_id

PUBLIC_ID_LENGTH = 40


def pk_column():
    return mapped_column(Integer, primary_key=True, autoincrement=True)


def public_id_column(category: str):
    """Unique typed public id, generated at flush when not set explicitly."""
    return mapped_column(
        String(PUBLIC_ID_LENGTH),
        unique=True,
        nullable=False,
        default=partial(generate_public_id, category),
    )


def created_at_column():
    return mapped_column(default=utc_now, nullable=False)


