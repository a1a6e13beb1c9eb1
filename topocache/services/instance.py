"""Refresh descriptors for each level of the business topology."""
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Protocol
from topocache.cache.redis import make_key


class Level(str, Enum):
    """Topology levels that are cached separately."""
    BUSINESS = "biz"
    SET = "set"
    MODULE = "module"
    CUSTOM = "custom"
    MAINLINE = "mainline"


class DetailLoader(Protocol):
    """
    Reads canonical documents from the system of record.

    Every method returns the JSON encoded document and raises
    NotFoundError or TransientFetchError on failure.
    """

    async def get_business(self, biz_id: int) -> str: ...

    async def list_sets(self, biz_id: int) -> str: ...

    async def list_modules(self, biz_id: int) -> str: ...

    async def list_custom_instances(self, obj_id: str, biz_id: int) -> str: ...

    async def get_mainline_associations(self) -> str: ...


@dataclass(frozen=True)
class RefreshInstance:
    """
    How to refresh one cached resource and where to store it.

    The key fields are templates formatted with ``inst_id``.
    """
    main_key: str
    lock_key: str
    expire_key: str
    expire_duration: float
    get_detail: Callable[[int], Awaitable[str]]

    def main_key_for(self, inst_id: int) -> str:
        return self.main_key.format(inst_id=inst_id)

    def lock_key_for(self, inst_id: int) -> str:
        return self.lock_key.format(inst_id=inst_id)

    def expire_key_for(self, inst_id: int) -> str:
        return self.expire_key.format(inst_id=inst_id)


def new_refresh_instance(
    base_key: str,
    expire_duration: float,
    get_detail: Callable[[int], Awaitable[str]],
) -> RefreshInstance:
    """Build a refresh instance whose lock and expiry keys sit beside base_key."""
    return RefreshInstance(
        main_key=base_key,
        lock_key=base_key + ":lock",
        expire_key=base_key + ":expire",
        expire_duration=expire_duration,
        get_detail=get_detail,
    )


class CacheCollection:
    """All refreshers that make up the business topology cache."""

    def __init__(
        self,
        loader: DetailLoader,
        business_ttl: float,
        set_ttl: float,
        module_ttl: float,
        custom_ttl: float,
        mainline_ttl: float,
    ):
        self.loader = loader
        self.custom_ttl = custom_ttl
        self.business = new_refresh_instance(
            make_key("biz", "detail", "{inst_id}"), business_ttl, loader.get_business
        )
        self.set = new_refresh_instance(
            make_key("set", "biz", "{inst_id}"), set_ttl, loader.list_sets
        )
        self.module = new_refresh_instance(
            make_key("module", "biz", "{inst_id}"), module_ttl, loader.list_modules
        )
        # The mainline model is shared by every business
        self.mainline = new_refresh_instance(
            make_key("biz", "custom", "topology"),
            mainline_ttl,
            lambda _inst_id: loader.get_mainline_associations(),
        )
        self._custom: Dict[str, RefreshInstance] = {}

    def custom(self, obj_id: str) -> RefreshInstance:
        """Refresher for the instances of one custom level object."""
        instance = self._custom.get(obj_id)
        if instance is None:
            instance = new_refresh_instance(
                make_key("custom", obj_id, "biz", "{inst_id}"),
                self.custom_ttl,
                partial(self.loader.list_custom_instances, obj_id),
            )
            self._custom[obj_id] = instance
        return instance

    def custom_objects(self) -> List[str]:
        """Custom objects a refresher has been built for so far."""
        return list(self._custom)

    def instance_for(self, level: Level, obj_id: Optional[str] = None) -> RefreshInstance:
        """Dispatch to the refresher of a level."""
        if level == Level.BUSINESS:
            return self.business
        if level == Level.SET:
            return self.set
        if level == Level.MODULE:
            return self.module
        if level == Level.MAINLINE:
            return self.mainline
        if not obj_id:
            raise ValueError("custom level requires an object id")
        return self.custom(obj_id)
