"""
Notification event emitter.

This service only emits events; rendering and delivery belong to the
notification service behind the webhook. Delivery is advisory: a failed
post is logged and never fails the operation that produced the event.
"""

import uuid
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from grantmatch.core.clock import utcnow
from grantmatch.core.config import Settings, get_settings
from grantmatch.core.logging import LoggerMixin

NEW_MATCHES = "new_matches"
DEADLINE_REMINDER = "deadline_reminder"
OPERATIONAL_ALERT = "operational_alert"


class NotificationEmitter(LoggerMixin):
    """Posts events as JSON to the configured webhook."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.webhook_url = self.settings.notification_webhook_url
        self._http = http_client

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        return self._http

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post(self, event: dict[str, Any]) -> None:
        response = await self._http_client().post(self.webhook_url, json=event)
        response.raise_for_status()

    async def emit(self, event_type: str, payload: dict[str, Any]) -> bool:
        """
        Emit one event.

        Returns:
            True when the event was delivered (or recorded, with no webhook)
        """
        event = {"type": event_type, "emitted_at": utcnow().isoformat(), **payload}
        return await self.deliver(event)

    async def deliver(self, event: dict[str, Any]) -> bool:
        event_type = event["type"]
        if not self.webhook_url:
            self.logger.info("notification_recorded", event_type=event_type)
            return True
        try:
            await self._post(event)
        except httpx.HTTPError as e:
            self.logger.warning("notification_failed", event_type=event_type, error=str(e))
            return False
        self.logger.info("notification_sent", event_type=event_type)
        return True

    async def new_matches(self, organization_id: str, new_match_count: int) -> bool:
        return await self.emit(NEW_MATCHES, {"orgId": organization_id, "newMatchCount": new_match_count})

    async def deadline_reminder(self, program_id: uuid.UUID, deadline_in_days: int) -> bool:
        return await self.emit(DEADLINE_REMINDER, {"programId": str(program_id), "deadlineInDays": deadline_in_days})

    async def alert(self, kind: str, source_id: str | None, message: str, **details: Any) -> bool:
        """Operational alert: source suspended, job dead-lettered, manual handling."""
        self.logger.warning("operational_alert", kind=kind, source_id=source_id, message=message)
        return await self.emit(OPERATIONAL_ALERT, {
            "kind": kind,
            "sourceId": source_id,
            "message": message,
            "details": details,
        })

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
