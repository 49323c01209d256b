"""Read-side PostHog client used by the analytics dashboard.

Every query degrades to an empty/zero result when PostHog misbehaves so one
failing insight does not blank the whole dashboard.
"""
import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from app import config
from app.exceptions import AnalyticsAPIError, AnalyticsNotConfiguredError

logger = logging.getLogger(__name__)

REGISTRATION_EVENTS = (
    "registration_started",
    "registration_form_submitted",
    "oauth_redirect_started",
    "registration_completed",
)

TODO_EVENTS = (
    "todo_created",
    "todo_completed",
    "todo_deleted",
    "todo_updated",
)


class PostHogClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        project_id: Optional[str] = None,
        host: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else config.POSTHOG_API_KEY
        self.project_id = project_id if project_id is not None else config.POSTHOG_PROJECT_ID
        self.host = (host or config.POSTHOG_HOST).rstrip("/")
        self._transport = transport
        self._timeout = timeout if timeout is not None else config.POSTHOG_TIMEOUT

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.project_id)

    async def fetch(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        if not self.configured:
            raise AnalyticsNotConfiguredError()

        url = f"{self.host}/api/projects/{self.project_id}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            response = await client.get(url, params={k: str(v) for k, v in (params or {}).items()},
                                        headers=headers)
        if response.is_error:
            raise AnalyticsAPIError(response.status_code, response.reason_phrase)
        return response.json()

    @staticmethod
    def _trend_params(event: str, days: int, **extra: Any) -> dict[str, Any]:
        params = {
            "insight": "TRENDS",
            "events": json.dumps([{"id": event, "name": event, "type": "events"}]),
            "date_from": f"-{days}d",
        }
        params.update(extra)
        return params

    @staticmethod
    def _first_series(data: Any) -> dict:
        try:
            return (data or {}).get("result", [])[0] or {}
        except (IndexError, AttributeError, TypeError):
            return {}

    async def get_event_count(self, event: str, days: int = 7) -> int:
        try:
            data = await self.fetch("/insights", self._trend_params(event, days))
            values = self._first_series(data).get("data") or []
            return int(values[0]) if values else 0
        except Exception:
            logger.exception("Error fetching event count for %s", event)
            return 0

    async def get_daily_active_users(self, days: int = 7) -> dict[str, list]:
        try:
            data = await self.fetch("/insights", self._trend_params("$pageview", days, interval="day"))
            series = self._first_series(data)
            return {"labels": series.get("labels") or [], "data": series.get("data") or []}
        except Exception:
            logger.exception("Error fetching daily active users")
            return {"labels": [], "data": []}

    async def _event_counts(self, events, days: int) -> dict[str, int]:
        counts = await asyncio.gather(*(self.get_event_count(e, days) for e in events))
        return dict(zip(events, counts))

    async def get_registration_funnel(self) -> dict[str, int]:
        return await self._event_counts(REGISTRATION_EVENTS, 30)

    async def get_todo_operations_stats(self) -> dict[str, int]:
        return await self._event_counts(TODO_EVENTS, 7)


def get_posthog_client() -> PostHogClient:
    return PostHogClient()
