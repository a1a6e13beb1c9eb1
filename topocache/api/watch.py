"""Change watch management endpoints."""
from fastapi import APIRouter, Depends
from topocache.api.deps import get_watcher
from topocache.models.schemas import WatchChangeResponse, WatchListResponse
from topocache.services.watch import Watcher

router = APIRouter()


@router.get("/watch", response_model=WatchListResponse)
async def list_watched_objects(watcher: Watcher = Depends(get_watcher)):
    """List the objects whose changes are being watched."""
    return WatchListResponse(objects=watcher.list_watched_objects())


@router.post("/watch/{obj_id}", response_model=WatchChangeResponse)
async def start_watch(obj_id: str, watcher: Watcher = Depends(get_watcher)):
    """Start watching an object; changed is False when already watched."""
    return WatchChangeResponse(obj_id=obj_id, changed=await watcher.start_watch(obj_id))


@router.delete("/watch/{obj_id}", response_model=WatchChangeResponse)
async def stop_watch(obj_id: str, watcher: Watcher = Depends(get_watcher)):
    """Stop watching an object; changed is False when it was not watched."""
    return WatchChangeResponse(obj_id=obj_id, changed=await watcher.stop_watch(obj_id))
