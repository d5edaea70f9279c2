"""TipTap JSON processing utilities.

Handles structural validation, plain text extraction and inline image
rewriting for TipTap editor content stored as conversation entry bodies.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Callable
from urllib.parse import parse_qs, quote, unquote, urlsplit

from app.core.config import settings
from app.core.errors import ValidationError
from app.types import JsonObject
from app.utils.public_ids import is_valid_public_id

INLINE_PROXY_SEGMENT = "inline-proxy"

# Block nodes whose text ends with a line break in the plain-text projection
BLOCK_NODES = {"paragraph", "heading", "blockquote", "codeBlock"}


def validate_tiptap_doc(doc: object) -> JsonObject:
    """
    Reject anything that is not a TipTap document root.

    Raises:
        ValidationError: body is not a dict with ``type == "doc"``
    """
    if not isinstance(doc, dict) or doc.get("type") != "doc":
        raise ValidationError("Message body must be a TipTap document")
    content = doc.get("content", [])
    if not isinstance(content, list):
        raise ValidationError("Message body content must be a list")
    return doc


# =============================================================================
# Plain text
# =============================================================================

def tiptap_to_text(doc: JsonObject | None) -> str:
    """
    Extract plain text from TipTap JSON.

    Pure and deterministic: the same document always yields the same text.

    Args:
        doc: TipTap JSON document

    Returns:
        Plain text string
    """
    if not doc or not isinstance(doc, dict):
        return ""

    if doc.get("type") != "doc":
        return ""

    return _node_to_text(doc).strip()


def _node_to_text(node: JsonObject) -> str:
    """Convert a TipTap node to plain text."""
    node_type = node.get("type")

    if node_type == "doc":
        return _content_to_text(node.get("content", []))

    if node_type == "text":
        text = node.get("text", "")
        return text if isinstance(text, str) else ""

    if node_type in BLOCK_NODES:
        content = _content_to_text(node.get("content", []))
        return content + "\n"

    if node_type in ("bulletList", "orderedList"):
        return _content_to_text(node.get("content", []))

    if node_type == "listItem":
        content = _content_to_text(node.get("content", []))
        return "- " + content

    if node_type == "hardBreak":
        return "\n"

    if node_type == "horizontalRule":
        return "\n---\n"

    if node_type == "mention":
        label = (node.get("attrs") or {}).get("label")
        return f"@{label}" if isinstance(label, str) else ""

    # Unknown containers still contribute their text
    return _content_to_text(node.get("content", []))


def _content_to_text(content: object) -> str:
    """Convert content array to plain text."""
    if not isinstance(content, list):
        return ""
    return "".join(_node_to_text(child) for child in content if isinstance(child, dict))


# =============================================================================
# Inline images
# =============================================================================

def walk_and_replace_images(doc: JsonObject, replace: Callable[[str], str]) -> JsonObject:
    """
    Return a copy of ``doc`` with every image ``src`` passed through ``replace``.

    The input document is left untouched.
    """
    result = copy.deepcopy(doc)
    _replace_images(result, replace)
    return result


def _replace_images(node: JsonObject, replace: Callable[[str], str]) -> None:
    if node.get("type") == "image":
        attrs = node.get("attrs")
        if isinstance(attrs, dict) and isinstance(attrs.get("src"), str):
            attrs["src"] = replace(attrs["src"])
    for child in node.get("content", []) or []:
        if isinstance(child, dict):
            _replace_images(child, replace)


@dataclass(frozen=True)
class InlineProxyImage:
    """Attachment reference carried by an inline-proxy image URL."""
    org_shortcode: str
    attachment_public_id: str
    file_name: str
    file_type: str
    size: int


def parse_inline_proxy_url(url: str) -> InlineProxyImage | None:
    """
    Parse ``{WEBAPP_URL}/inline-proxy/{org}/{attachment}/{file}?type=..&size=..``.

    Returns None for anything else (external images pass through unchanged).
    """
    try:
        parts = urlsplit(url)
        webapp = urlsplit(settings.WEBAPP_URL)
    except ValueError:
        return None
    if (parts.scheme, parts.netloc) != (webapp.scheme, webapp.netloc):
        return None

    segments = parts.path.strip("/").split("/")
    if len(segments) != 4 or segments[0] != INLINE_PROXY_SEGMENT:
        return None
    _, org_shortcode, attachment_public_id, raw_file_name = segments
    if not is_valid_public_id("convoAttachments", attachment_public_id):
        return None

    query = parse_qs(parts.query)
    file_type = (query.get("type") or [""])[0]
    raw_size = (query.get("size") or [""])[0]
    if not file_type or not raw_size.isdigit():
        return None

    file_name = unquote(raw_file_name)
    if not org_shortcode or not file_name:
        return None

    return InlineProxyImage(
        org_shortcode=org_shortcode,
        attachment_public_id=attachment_public_id,
        file_name=file_name,
        file_type=file_type,
        size=int(raw_size),
    )


def build_inline_proxy_url(
    *, org_shortcode: str, attachment_public_id: str, file_name: str, file_type: str, size: int
) -> str:
    """Inverse of ``parse_inline_proxy_url``; used by clients and tests."""
    base = settings.WEBAPP_URL.rstrip("/")
    return (
        f"{base}/{INLINE_PROXY_SEGMENT}/{org_shortcode}/{attachment_public_id}/"
        f"{quote(file_name)}?type={quote(file_type, safe='')}&size={size}"
    )
