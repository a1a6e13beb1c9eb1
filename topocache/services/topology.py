"""Business topology snapshots assembled from the per-level caches."""
import asyncio
import json
import logging
from typing import Dict, List, Optional
from topocache.cache.redis import DistributedLock, KeyValueStore
from topocache.config import settings
from topocache.errors import CacheError
from topocache.models.schemas import (
    BusinessInfo,
    BusinessTopologySnapshot,
    CustomInstance,
    MainlineAssociation,
    ModuleInfo,
    SetInfo,
)
from topocache.services.instance import CacheCollection, DetailLoader, Level
from topocache.services.refresh import RefreshCoordinator, RefreshManager

logger = logging.getLogger(__name__)

BUSINESS_OBJECT = "biz"
STANDARD_OBJECTS = {"biz", "set", "module", "host"}

# The mainline model is global, so it lives under a single instance id.
MAINLINE_INST_ID = 0


def mainline_order(edges: List[MainlineAssociation]) -> List[str]:
    """
    Walk the mainline model from the business downwards.

    Returns object ids ordered top-down, starting with "biz". A cycle in
    the edges ends the walk at the first repeated object.
    """
    child_of = {edge.associate_to: edge.obj_id for edge in edges}
    order = [BUSINESS_OBJECT]
    seen = {BUSINESS_OBJECT}
    current = BUSINESS_OBJECT
    while current in child_of:
        child = child_of[current]
        if child in seen:
            logger.warning("mainline model has a cycle at %s", child)
            break
        order.append(child)
        seen.add(child)
        current = child
    return order


def custom_levels(order: List[str]) -> List[str]:
    """Custom objects of a mainline order, keeping their order."""
    return [obj_id for obj_id in order if obj_id not in STANDARD_OBJECTS]


class TopologyCache:
    """Read and invalidate cached business topology."""

    def __init__(self, collection: CacheCollection, coordinator: RefreshCoordinator):
        self.collection = collection
        self.coordinator = coordinator

    async def mainline(self) -> List[MainlineAssociation]:
        """Cached mainline model edges."""
        raw = await self.coordinator.get(self.collection.mainline, MAINLINE_INST_ID)
        return [MainlineAssociation(**edge) for edge in json.loads(raw)]

    async def custom_objects(self, reload: bool = False) -> List[str]:
        """
        Custom objects that currently take part in the mainline.

        With reload the cached mainline model is invalidated first, so a
        level added or removed since the last load is seen at once.
        """
        if reload:
            await self.coordinator.invalidate(self.collection.mainline, MAINLINE_INST_ID)
        return custom_levels(mainline_order(await self.mainline()))

    async def get_business_topology(self, biz_id: int) -> BusinessTopologySnapshot:
        """
        Snapshot of one business' topology.

        Nodes whose parent is missing from the level above are left out,
        so every parent id in the result resolves inside the snapshot.

        Raises:
            NotFoundError: the business does not exist
            UnavailableError: a level could not be loaded or served stale
        """
        edges = await self.mainline()
        levels = custom_levels(mainline_order(edges))

        business_raw, sets_raw, modules_raw, *customs_raw = await asyncio.gather(
            self.coordinator.get(self.collection.business, biz_id),
            self.coordinator.get(self.collection.set, biz_id),
            self.coordinator.get(self.collection.module, biz_id),
            *[self.coordinator.get(self.collection.custom(obj_id), biz_id) for obj_id in levels],
        )

        business = BusinessInfo(**json.loads(business_raw))
        sets = [SetInfo(**doc) for doc in json.loads(sets_raw)]
        modules = [ModuleInfo(**doc) for doc in json.loads(modules_raw)]
        customs_by_level: Dict[str, List[CustomInstance]] = {
            obj_id: [CustomInstance(**doc) for doc in json.loads(raw)]
            for obj_id, raw in zip(levels, customs_raw)
        }

        # Walk the levels top-down keeping only nodes attached to the level above
        parent_ids = {business.biz_id}
        kept_customs: List[CustomInstance] = []
        for obj_id in levels:
            attached = [i for i in customs_by_level[obj_id] if i.parent_id in parent_ids]
            _log_pruned(biz_id, obj_id, len(customs_by_level[obj_id]) - len(attached))
            kept_customs.extend(attached)
            parent_ids = {i.inst_id for i in attached}

        kept_sets = [s for s in sets if s.parent_id in parent_ids]
        _log_pruned(biz_id, Level.SET.value, len(sets) - len(kept_sets))

        set_ids = {s.set_id for s in kept_sets}
        kept_modules = [m for m in modules if m.set_id in set_ids]
        _log_pruned(biz_id, Level.MODULE.value, len(modules) - len(kept_modules))

        return BusinessTopologySnapshot(
            biz_id=business.biz_id,
            biz_name=business.biz_name,
            sets=kept_sets,
            modules=kept_modules,
            custom_instances=kept_customs,
            mainline=edges,
            custom_levels=levels,
        )

    async def invalidate(
        self,
        biz_id: int,
        level: Level,
        obj_id: Optional[str] = None,
    ) -> List[str]:
        """Force the next read of one level of a business to reload it."""
        instance = self.collection.instance_for(level, obj_id)
        inst_id = MAINLINE_INST_ID if level == Level.MAINLINE else biz_id
        await self.coordinator.invalidate(instance, inst_id)
        if level == Level.CUSTOM:
            return [obj_id]
        return [level.value]

    async def invalidate_business(self, biz_id: int) -> List[str]:
        """Force the next read of every level of a business to reload it."""
        invalidated = []
        for level in (Level.BUSINESS, Level.SET, Level.MODULE):
            invalidated.extend(await self.invalidate(biz_id, level))

        try:
            customs = await self.custom_objects()
        except CacheError as err:
            logger.warning("biz %s: mainline unavailable, invalidating known custom levels: %s",
                           biz_id, err)
            customs = self.collection.custom_objects()
        for obj_id in customs:
            invalidated.extend(await self.invalidate(biz_id, Level.CUSTOM, obj_id))
        return invalidated


def _log_pruned(biz_id: int, level: str, count: int):
    if count > 0:
        logger.warning("biz %s: left out %d %s nodes with unknown parent", biz_id, count, level)


def new_topology_cache(
    store: KeyValueStore,
    locker: DistributedLock,
    loader: DetailLoader,
    refresh_manager: Optional[RefreshManager] = None,
) -> TopologyCache:
    """Build a topology cache tuned from the application settings."""
    collection = CacheCollection(
        loader,
        business_ttl=settings.business_cache_ttl,
        set_ttl=settings.set_cache_ttl,
        module_ttl=settings.module_cache_ttl,
        custom_ttl=settings.custom_cache_ttl,
        mainline_ttl=settings.mainline_cache_ttl,
    )
    coordinator = RefreshCoordinator(
        store,
        locker,
        retry_duration=settings.retry_duration,
        max_attempts=settings.max_refresh_attempts,
        lock_ttl=settings.lock_ttl,
        stale_ttl_multiplier=settings.stale_ttl_multiplier,
        stale_while_refresh=settings.stale_while_refresh,
        refresh_manager=refresh_manager,
    )
    return TopologyCache(collection, coordinator)
