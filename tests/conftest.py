"""Shared fixtures for the topology cache tests."""
import pytest
from topocache.services.instance import CacheCollection, new_refresh_instance
from topocache.services.refresh import RefreshCoordinator
from topocache.services.topology import TopologyCache
from fakes import BIZ_ID, CountingDetail, FakeLoader, FakeLock, FakeStore


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def locker():
    return FakeLock()


@pytest.fixture
def coordinator(store, locker):
    return RefreshCoordinator(
        store,
        locker,
        retry_duration=0.01,
        max_attempts=5,
        lock_ttl=5.0,
        stale_ttl_multiplier=10.0,
    )


@pytest.fixture
def detail():
    return CountingDetail()


@pytest.fixture
def instance(detail):
    return new_refresh_instance("cc:v3:test:{inst_id}", 60.0, detail)


@pytest.fixture
def loader():
    """Business 1001 with two sets and one module."""
    loader = FakeLoader()
    loader.businesses[BIZ_ID] = {"bk_biz_id": BIZ_ID, "bk_biz_name": "Biz-1001"}
    loader.sets[BIZ_ID] = [
        {"bk_set_id": 2001, "bk_set_name": "Set-A", "bk_parent_id": BIZ_ID},
        {"bk_set_id": 2002, "bk_set_name": "Set-B", "bk_parent_id": BIZ_ID},
    ]
    loader.modules[BIZ_ID] = [
        {"bk_module_id": 3001, "bk_module_name": "Mod-A", "bk_set_id": 2001},
    ]
    return loader


@pytest.fixture
def collection(loader):
    return CacheCollection(
        loader,
        business_ttl=60.0,
        set_ttl=60.0,
        module_ttl=60.0,
        custom_ttl=60.0,
        mainline_ttl=60.0,
    )


@pytest.fixture
def topology(collection, coordinator):
    return TopologyCache(collection, coordinator)
