"""Evidence file storage client."""

from __future__ import annotations

import logging
import uuid

import httpx

from src.config import settings
from src.exceptions import UpstreamUnavailableException
from src.modules.dispute.providers.base import EvidenceStore

logger = logging.getLogger(__name__)


class HttpEvidenceStore(EvidenceStore):
    """Uploads evidence to the object storage gateway under ``disputes/{owner}/``."""

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url or settings.evidence_store_base_url
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=60.0)
        return self._client

    async def upload(self, content: bytes, file_name: str, content_type: str, owner_id: str) -> str:
        client = await self._get_client()
        extension = file_name.rsplit(".", 1)[-1] if "." in file_name else "bin"
        object_name = f"evidence_{uuid.uuid4().hex}.{extension}"
        folder = "videos" if content_type.startswith("video/") else "images"
        try:
            response = await client.post(
                "/evidence",
                data={"folder": f"disputes/{owner_id}/{folder}"},
                files={"file": (object_name, content, content_type)},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Evidence upload failed for %s: %s", file_name, exc)
            raise UpstreamUnavailableException("Evidence storage is unavailable") from exc
        url = response.json()["url"]
        logger.info("Stored evidence %s for user %s", object_name, owner_id)
        return url
