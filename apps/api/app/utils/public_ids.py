"""Typed public identifiers.

Every externally visible row carries a public id of the form
``<prefix>_<26 chars>``: the prefix names the entity category and the body
is a 128-bit random value in Crockford base32. Internal integer keys never
leave the service.
"""

from __future__ import annotations

import re
import secrets
from typing import Annotated

from pydantic import AfterValidator

CROCKFORD_ALPHABET = "0123456789abcdefghjkmnpqrstvwxyz"
BODY_LENGTH = 26

PUBLIC_ID_PREFIXES: dict[str, str] = {
    "org": "org",
    "orgMembers": "om",
    "orgMemberProfile": "omp",
    "teams": "t",
    "spaces": "sp",
    "spaceMembers": "spm",
    "spaceWorkflows": "swf",
    "spaceTags": "stg",
    "domains": "dom",
    "emailIdentities": "ei",
    "contacts": "k",
    "convos": "c",
    "convoSubjects": "cs",
    "convoParticipants": "cp",
    "convoEntries": "ce",
    "convoAttachments": "ca",
    "pendingAttachments": "ca",
    "convoToSpaces": "cts",
    "convoWorkflows": "cwf",
    "convoTags": "ctg",
}

_BODY_PATTERN = re.compile(rf"^[{CROCKFORD_ALPHABET}]{{{BODY_LENGTH}}}$")


def _prefix(category: str) -> str:
    try:
        return PUBLIC_ID_PREFIXES[category]
    except KeyError:
        raise ValueError(f"Unknown public id category: {category}") from None


def _encode(value: int) -> str:
    chars = []
    for _ in range(BODY_LENGTH):
        chars.append(CROCKFORD_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def generate_public_id(category: str) -> str:
    """Return a new collision-resistant public id for ``category``."""
    return f"{_prefix(category)}_{_encode(secrets.randbits(128))}"


def is_valid_public_id(category: str, value: object) -> bool:
    """True when ``value`` is a well-formed public id of ``category``."""
    if not isinstance(value, str):
        return False
    prefix, sep, body = value.partition("_")
    if not sep or prefix != _prefix(category):
        return False
    return bool(_BODY_PATTERN.match(body))


def public_id_validator(category: str):
    """Pydantic after-validator enforcing the category's id format."""

    def _validate(value: str) -> str:
        if not is_valid_public_id(category, value):
            raise ValueError(f"Invalid {category} public id")
        return value

    return AfterValidator(_validate)


OrgMemberPublicId = Annotated[str, public_id_validator("orgMembers")]
TeamPublicId = Annotated[str, public_id_validator("teams")]
ContactPublicId = Annotated[str, public_id_validator("contacts")]
SpacePublicId = Annotated[str, public_id_validator("spaces")]
SpaceWorkflowPublicId = Annotated[str, public_id_validator("spaceWorkflows")]
EmailIdentityPublicId = Annotated[str, public_id_validator("emailIdentities")]
ConvoPublicId = Annotated[str, public_id_validator("convos")]
ConvoEntryPublicId = Annotated[str, public_id_validator("convoEntries")]
ConvoAttachmentPublicId = Annotated[str, public_id_validator("convoAttachments")]
