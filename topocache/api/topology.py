"""Business topology endpoints."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from topocache.api.deps import get_topology
from topocache.errors import NotFoundError, UnavailableError
from topocache.models.schemas import BusinessTopologySnapshot, InvalidateResponse
from topocache.services.instance import Level
from topocache.services.topology import TopologyCache

router = APIRouter()


@router.get("/topology/{biz_id}", response_model=BusinessTopologySnapshot)
async def get_business_topology(
    biz_id: int,
    topology: TopologyCache = Depends(get_topology),
):
    """
    Get the cached topology of a business.

    Returns the business with its custom level instances, sets and
    modules. Served from cache; stale data may be returned while the
    cache is being refreshed by another server.
    """
    try:
        return await topology.get_business_topology(biz_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/topology/{biz_id}/invalidate", response_model=InvalidateResponse)
async def invalidate_business_topology(
    biz_id: int,
    level: Optional[Level] = Query(None, description="Level to invalidate, all levels if omitted"),
    obj_id: Optional[str] = Query(None, description="Custom object id, required for the custom level"),
    topology: TopologyCache = Depends(get_topology),
):
    """
    Force the next read of a business' topology to reload from the
    system of record.
    """
    if level is None:
        levels = await topology.invalidate_business(biz_id)
    elif level == Level.CUSTOM and not obj_id:
        raise HTTPException(status_code=400, detail="obj_id is required for the custom level")
    else:
        if level == Level.CUSTOM:
            try:
                customs = await topology.custom_objects()
            except UnavailableError as e:
                raise HTTPException(status_code=503, detail=str(e))
            if obj_id not in customs:
                raise HTTPException(status_code=404, detail=f"{obj_id} is not a custom mainline level")
        levels = await topology.invalidate(biz_id, level, obj_id)

    return InvalidateResponse(biz_id=biz_id, levels=levels)
