"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from topocache.api import health, topology, watch
from topocache.cache.redis import RedisLock, cache
from topocache.config import settings
from topocache.services.coreservice import coreservice_client
from topocache.services.observer import WatchObserver
from topocache.services.refresh import RefreshManager
from topocache.services.topology import new_topology_cache
from topocache.services.watch import Watcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown.

    Connects Redis, wires the topology cache and starts the watch
    reconciliation loop on startup; stops every watch and closes Redis
    on shutdown.
    """
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Startup
    await cache.connect()
    refresh_manager = RefreshManager()
    app.state.topology = new_topology_cache(
        cache, RedisLock(cache), coreservice_client, refresh_manager
    )
    app.state.watcher = Watcher(
        WatchObserver(),
        coreservice_client,
        app.state.topology,
        poll_interval=settings.watch_poll_interval,
        limit=settings.watch_event_limit,
    )
    stop_reconcile = asyncio.Event()
    reconcile_task = asyncio.create_task(
        app.state.watcher.run_reconcile(settings.watch_reconcile_interval, stop_reconcile)
    )
    logger.info("topology cache started")
    try:
        yield
    finally:
        # Shutdown
        stop_reconcile.set()
        try:
            await reconcile_task
        except Exception:
            logger.exception("reconcile loop ended with an error")
        try:
            await app.state.watcher.close()
            await refresh_manager.drain()
        finally:
            await cache.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Business Topology Cache",
    description="Redis cached business topology for the CMDB",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(topology.router, prefix="/api", tags=["Topology"])
app.include_router(watch.router, prefix="/api", tags=["Watch"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Business Topology Cache",
        "version": "0.1.0",
        "endpoints": {
            "health": "/health",
            "business_topology": "/api/topology/{biz_id}",
            "invalidate": "/api/topology/{biz_id}/invalidate?level={level}&obj_id={obj_id}",
            "watched_objects": "/api/watch",
            "start_watch": "POST /api/watch/{obj_id}",
            "stop_watch": "DELETE /api/watch/{obj_id}",
        },
    }
