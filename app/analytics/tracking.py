import logging
from typing import Any, Optional

import httpx

from app import config

logger = logging.getLogger(__name__)


class EventTracker:
    """Server-side event capture. Does nothing without a capture key."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.POSTHOG_CAPTURE_KEY
        self.host = (host or config.POSTHOG_HOST).rstrip("/")
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def capture(self, distinct_id: str, event: str, properties: Optional[dict[str, Any]] = None) -> bool:
        if not self.enabled:
            return False
        payload = {
            "api_key": self.api_key,
            "event": event,
            "distinct_id": distinct_id,
            "properties": properties or {},
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=config.POSTHOG_TIMEOUT) as client:
                response = await client.post(f"{self.host}/capture/", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to capture %s for %s: %s", event, distinct_id, e)
            return False
        logger.debug("Captured %s for %s", event, distinct_id)
        return True


def get_event_tracker() -> EventTracker:
    return EventTracker()
