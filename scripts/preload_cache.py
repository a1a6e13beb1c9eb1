"""Script to preload the topology cache for a list of businesses."""
import asyncio
import sys
from topocache.cache.redis import RedisLock, cache
from topocache.errors import CacheError
from topocache.services.coreservice import coreservice_client
from topocache.services.topology import new_topology_cache


async def preload_business(topology, biz_id: int):
    """Preload one business topology into cache."""
    print(f"Preloading business: {biz_id}")
    try:
        await topology.invalidate_business(biz_id)
        snapshot = await topology.get_business_topology(biz_id)
    except CacheError as e:
        print(f"  ✗ Failed to load {biz_id}: {e}")
        return
    print(f"  ✓ Cached {snapshot.biz_name}: {len(snapshot.sets)} sets, "
          f"{len(snapshot.modules)} modules, {len(snapshot.custom_instances)} custom instances")


async def main(biz_ids: list[int]):
    """Main preload function."""
    await cache.connect()

    try:
        topology = new_topology_cache(cache, RedisLock(cache), coreservice_client)
        for biz_id in biz_ids:
            await preload_business(topology, biz_id)
    finally:
        await cache.disconnect()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python preload_cache.py <biz_id1> [biz_id2] ...")
        sys.exit(1)

    asyncio.run(main([int(arg) for arg in sys.argv[1:]]))
