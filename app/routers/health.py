from fastapi import APIRouter
from fastapi.responses import JSONResponse
from typing import Any
from app.services.feed import get_feed

router = APIRouter()


@router.get("/redis")
async def redis_health() -> Any:
    """Return health of the Redis bridge behind the message feed.

    If `REDIS_URL` is not configured, returns status `not_configured`; the feed
    still works for subscribers connected to this instance.
    """
    feed = get_feed()
    if not feed.redis:
        return JSONResponse(
            {"status": "not_configured", "details": "REDIS_URL not set", "subscribers": feed.subscriber_count},
            status_code=200,
        )

    try:
        ok = await feed.redis.ping()
        if ok:
            return {"status": "ok", "redis": "connected", "channel": feed.channel, "subscribers": feed.subscriber_count}
        else:
            return JSONResponse({"status": "error", "redis": "ping_failed"}, status_code=500)
    except Exception as e:
        return JSONResponse({"status": "error", "error": str(e)}, status_code=500)
