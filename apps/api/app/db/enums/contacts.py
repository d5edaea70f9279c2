"""External contact enums."""

from enum import Enum


class ContactType(str, Enum):
    PERSON = "person"
    PRODUCT = "product"
    NEWSLETTER = "newsletter"
    MARKETING = "marketing"
    UNKNOWN = "unknown"


class ContactScreenerStatus(str, Enum):
    """
    Screener decision for an external contact.

    Contacts added explicitly by a member are approved; inbound-only
    contacts start as pending.
    """

    PENDING = "pending"
    APPROVE = "approve"
    REJECT = "reject"
