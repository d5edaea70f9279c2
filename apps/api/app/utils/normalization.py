"""Normalization helpers for external email addresses."""

from typing import NamedTuple, Optional


class EmailParts(NamedTuple):
    username: str
    domain: str

    @property
    def address(self) -> str:
        return f"{self.username}@{self.domain}"


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    return email.strip().lower()


def split_email_address(email: Optional[str]) -> Optional[EmailParts]:
    """
    Split an address into (username, domain) after normalization.

    Returns None when the input has no single '@' separating two non-empty
    halves, or when the domain has no dot.
    """
    normalized = normalize_email(email)
    if not normalized or normalized.count("@") != 1:
        return None
    username, _, domain = normalized.partition("@")
    if not username or not domain or "." not in domain.strip("."):
        return None
    if any(ch.isspace() for ch in normalized):
        return None
    return EmailParts(username=username, domain=domain)
