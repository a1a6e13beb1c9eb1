"""Health check endpoint."""
import time
from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from topocache.api.deps import get_watcher
from topocache.cache.redis import cache
from topocache.models.schemas import HealthResponse
from topocache.services.watch import Watcher

router = APIRouter()

# Track startup time
START_TIME = time.time()


@router.get("/health", response_model=HealthResponse)
async def health_check(watcher: Watcher = Depends(get_watcher)):
    """
    Health check endpoint.

    Returns basic system status, Redis connectivity and the number of
    running change watches.
    """
    redis_connected = False

    if cache.redis:
        try:
            await cache.redis.ping()
            redis_connected = True
        except (RedisError, OSError):
            pass

    return HealthResponse(
        status="ok" if redis_connected else "degraded",
        redis_connected=redis_connected,
        uptime_seconds=time.time() - START_TIME,
        watched_objects=len(watcher.list_watched_objects()),
    )
