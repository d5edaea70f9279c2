"""Sending domain and identity enums."""

from enum import Enum


class DomainStatus(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class DomainSendingMode(str, Enum):
    """How outbound mail leaves the domain; DISABLED blocks sending entirely."""

    NATIVE = "native"
    EXTERNAL = "external"
    DISABLED = "disabled"
