"""Request dependencies resolving the services wired up at startup."""
from fastapi import Request
from topocache.services.topology import TopologyCache
from topocache.services.watch import Watcher


def get_topology(request: Request) -> TopologyCache:
    return request.app.state.topology


def get_watcher(request: Request) -> Watcher:
    return request.app.state.watcher
