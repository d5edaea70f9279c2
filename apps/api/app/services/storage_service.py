"""Client for the external attachment storage service."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


def build_attachment_url(*, org_shortcode: str, attachment_public_id: str, file_name: str) -> str:
    """Stable, publicly fetchable URL of a stored attachment."""
    base = settings.STORAGE_URL.rstrip("/")
    return f"{base}/attachment/{org_shortcode}/{attachment_public_id}/{quote(file_name)}"


def attachment_storage_key(*, org_public_id: str, attachment_public_id: str, file_name: str) -> str:
    return f"{org_public_id}/{attachment_public_id}/{file_name}"


class StorageClient:
    """Thin sync wrapper around the storage service HTTP API."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.STORAGE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.STORAGE_KEY
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_HTTP_TIMEOUT_SECONDS
        self.transport = transport

    def delete_attachments(self, keys: list[str]) -> bool:
        """
        Ask storage to purge blobs by ``{orgPublicId}/{attachmentPublicId}/{filename}`` key.

        Best-effort: failures are logged and reported as False, never raised.
        """
        if not keys:
            return True
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f"{self.base_url}/api/attachments/deleteAttachments",
                    headers={"Authorization": self.api_key},
                    json={"attachments": keys},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Attachment storage purge failed for %d blobs: %s", len(keys), exc
            )
            return False
        return True


storage_client = StorageClient()
