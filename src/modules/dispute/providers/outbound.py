"""Synchronous activity, notification and reputation clients.

These run inside the Celery outbox worker, so they use blocking httpx
clients. Failures raise; the outbox keeps the row for retry.
"""

from __future__ import annotations

import logging

import httpx

from src.config import settings
from src.modules.dispute.providers.base import (
    ActivityRecorder,
    NotificationService,
    ReputationService,
)

logger = logging.getLogger(__name__)


class _SyncHttpClient:
    def __init__(self, base_url: str, client: httpx.Client | None = None) -> None:
        self.base_url = base_url
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.base_url, timeout=settings.collaborator_timeout_seconds
            )
        return self._client

    def _post(self, path: str, payload: dict) -> None:
        response = self._get_client().post(path, json=payload)
        response.raise_for_status()

    def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            self._client.close()
        self._client = None


class HttpActivityRecorder(_SyncHttpClient, ActivityRecorder):
    def __init__(self, base_url: str | None = None, client: httpx.Client | None = None) -> None:
        super().__init__(base_url or settings.activity_recorder_base_url, client)

    def log(self, event: dict) -> None:
        self._post("/activities", event)
        logger.debug("Recorded activity %s", event.get("type"))


class HttpNotificationService(_SyncHttpClient, NotificationService):
    def __init__(self, base_url: str | None = None, client: httpx.Client | None = None) -> None:
        super().__init__(base_url or settings.notification_service_base_url, client)

    def notify(self, user_id: str, event: dict) -> None:
        self._post("/notifications", {"user_id": user_id, "event": event})
        logger.debug("Notified %s of %s", user_id, event.get("type"))


class HttpReputationService(_SyncHttpClient, ReputationService):
    def __init__(self, base_url: str | None = None, client: httpx.Client | None = None) -> None:
        super().__init__(base_url or settings.reputation_service_base_url, client)

    def issue_strike(self, user_id: str, dispute_id: str, reason: str) -> None:
        self._post("/strikes", {"user_id": user_id, "dispute_id": dispute_id, "reason": reason})
        logger.info("Strike signal sent for user %s (dispute %s)", user_id, dispute_id)
