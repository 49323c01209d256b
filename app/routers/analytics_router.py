import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.analytics.posthog import PostHogClient, get_posthog_client
from app.dependencies import get_current_user
from app.exceptions import AnalyticsNotConfiguredError
from app.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter()


async def collect_dashboard(client: PostHogClient) -> dict:
    if not client.configured:
        raise AnalyticsNotConfiguredError()
    dau, funnel, todo_stats = await asyncio.gather(
        client.get_daily_active_users(7),
        client.get_registration_funnel(),
        client.get_todo_operations_stats(),
    )
    return {
        "configured": True,
        "daily_active_users": dau,
        "registration_funnel": funnel,
        "todo_operations": todo_stats,
    }


@router.get("")
async def analytics(
    client: PostHogClient = Depends(get_posthog_client),
    user: User = Depends(get_current_user),
):
    try:
        return await collect_dashboard(client)
    except AnalyticsNotConfiguredError:
        raise
    except Exception:
        logger.exception("Analytics API error")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch analytics data", "configured": False},
        )
