"""HTTP client for the CMDB core service (system of record)."""
import json
from typing import Any, Dict, List, Optional, Tuple
import httpx
from topocache.config import settings
from topocache.errors import NotFoundError, TransientFetchError
from topocache.models.schemas import ChangeEvent

PAGE_LIMIT = 500

INSTANCES_PATH = "/api/v3/read/model/{obj_id}/instances"
ASSOCIATION_PATH = "/api/v3/read/model/association"
LATEST_EVENT_PATH = "/api/v3/find/cache/event/node/latest"
FOLLOWING_EVENTS_PATH = "/api/v3/find/cache/event/node/with_start_from"
EVENT_DETAIL_PATH = "/api/v3/find/cache/event/detail"

MAINLINE_ASSOCIATION_KIND = "bk_mainline"

BUSINESS_FIELDS = ["bk_biz_id", "bk_biz_name"]
SET_FIELDS = ["bk_set_id", "bk_set_name", "bk_parent_id"]
MODULE_FIELDS = ["bk_module_id", "bk_module_name", "bk_set_id"]
CUSTOM_FIELDS = ["bk_inst_id", "bk_inst_name", "bk_parent_id"]

# Event resources of the standard levels; every custom level shares one.
STANDARD_RESOURCES = {"biz": "biz", "set": "set", "module": "module"}
CUSTOM_RESOURCE = "mainline_instance"


def _project(doc: Dict[str, Any], fields: List[str]) -> Dict[str, Any]:
    return {field: doc.get(field) for field in fields}


class CoreServiceClient:
    """
    Client for the core service.

    Loads the canonical business, set, module and custom level documents
    and reads the change event chain used by the watches.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize HTTP client settings."""
        self.base_url = base_url or settings.coreservice_base_url
        self.timeout = httpx.Timeout(timeout or settings.http_timeout)
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "BK_User": settings.request_user,
            "HTTP_BLUEKING_SUPPLIER_ACCOUNT": settings.supplier_account,
        }

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        """
        POST to the core service and unwrap the response envelope.

        Raises:
            NotFoundError: the endpoint answered 404
            TransientFetchError: transport error, error status or failed result
        """
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                response = await client.post(path, json=body, headers=self._headers())
            except httpx.HTTPError as e:
                raise TransientFetchError(f"POST {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"POST {path} returned 404")
        if response.is_error:
            raise TransientFetchError(f"POST {path} returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientFetchError(f"POST {path} returned invalid JSON") from e

        if not payload.get("result"):
            raise TransientFetchError(
                f"POST {path} failed: [{payload.get('bk_error_code')}] "
                f"{payload.get('bk_error_msg')}"
            )
        return payload.get("data")

    async def _list_instances(
        self,
        obj_id: str,
        condition: Dict[str, Any],
        fields: List[str],
    ) -> List[Dict[str, Any]]:
        """Read every matching instance, page by page."""
        path = INSTANCES_PATH.format(obj_id=obj_id)
        docs: List[Dict[str, Any]] = []
        start = 0
        while True:
            data = await self._post(path, {
                "condition": condition,
                "fields": fields,
                "page": {"start": start, "limit": PAGE_LIMIT},
            }) or {}
            info = data.get("info") or []
            docs.extend(info)
            start += len(info)
            if not info or start >= data.get("count", 0):
                return docs

    async def get_business(self, biz_id: int) -> str:
        """Business base info as JSON."""
        docs = await self._list_instances("biz", {"bk_biz_id": biz_id}, BUSINESS_FIELDS)
        if not docs:
            raise NotFoundError(f"business {biz_id} not found")
        return json.dumps(_project(docs[0], BUSINESS_FIELDS))

    async def list_sets(self, biz_id: int) -> str:
        """All sets of a business as a JSON list."""
        docs = await self._list_instances("set", {"bk_biz_id": biz_id}, SET_FIELDS)
        return json.dumps([_project(doc, SET_FIELDS) for doc in docs])

    async def list_modules(self, biz_id: int) -> str:
        """All modules of a business as a JSON list."""
        docs = await self._list_instances("module", {"bk_biz_id": biz_id}, MODULE_FIELDS)
        return json.dumps([_project(doc, MODULE_FIELDS) for doc in docs])

    async def list_custom_instances(self, obj_id: str, biz_id: int) -> str:
        """Instances of one custom mainline object in a business as a JSON list."""
        docs = await self._list_instances(obj_id, {"bk_biz_id": biz_id}, CUSTOM_FIELDS)
        instances = []
        for doc in docs:
            instance = _project(doc, CUSTOM_FIELDS)
            instance["bk_obj_id"] = obj_id
            instances.append(instance)
        return json.dumps(instances)

    async def get_mainline_associations(self) -> str:
        """Mainline model edges as a JSON list."""
        data = await self._post(ASSOCIATION_PATH, {
            "condition": {"bk_asst_id": MAINLINE_ASSOCIATION_KIND},
        }) or {}
        edges = [
            {"bk_obj_id": doc.get("bk_obj_id"), "bk_asst_obj_id": doc.get("bk_asst_obj_id")}
            for doc in data.get("info") or []
        ]
        return json.dumps(edges)

    @staticmethod
    def _resource_filter(obj_id: str) -> Tuple[str, Dict[str, Any]]:
        if obj_id in STANDARD_RESOURCES:
            return STANDARD_RESOURCES[obj_id], {}
        return CUSTOM_RESOURCE, {"bk_obj_id": obj_id}

    async def latest_cursor(self, obj_id: str) -> Optional[str]:
        """Cursor of the newest event of obj_id, or None when there is none."""
        resource, event_filter = self._resource_filter(obj_id)
        node = await self._post(LATEST_EVENT_PATH, {
            "bk_resource": resource,
            "filter": event_filter,
        })
        if not node:
            return None
        return node.get("cursor")

    async def events_after(
        self,
        obj_id: str,
        cursor: Optional[str],
        limit: int,
    ) -> Tuple[List[ChangeEvent], Optional[str]]:
        """
        Events of obj_id that follow cursor, oldest first.

        Returns the events and the cursor to continue from.
        """
        resource, event_filter = self._resource_filter(obj_id)
        body: Dict[str, Any] = {
            "bk_resource": resource,
            "filter": event_filter,
            "limit": limit,
        }
        if cursor:
            body["start_cursor"] = cursor
        nodes = await self._post(FOLLOWING_EVENTS_PATH, body) or []
        if not nodes:
            return [], cursor

        cursors = [node["cursor"] for node in nodes]
        details = await self._post(EVENT_DETAIL_PATH, {
            "bk_resource": resource,
            "cursors": cursors,
        }) or []

        events = []
        for index, node in enumerate(nodes):
            detail = details[index] if index < len(details) else None
            events.append(ChangeEvent(
                cursor=node["cursor"],
                event_type=node.get("event_type", ""),
                obj_id=obj_id,
                biz_id=_biz_id_of(detail),
            ))
        return events, cursors[-1]


def _biz_id_of(detail: Optional[str]) -> Optional[int]:
    if not detail:
        return None
    try:
        doc = json.loads(detail)
    except ValueError:
        return None
    if not isinstance(doc, dict):
        return None
    biz_id = doc.get("bk_biz_id")
    return biz_id if isinstance(biz_id, int) else None


# Global client instance
coreservice_client = CoreServiceClient()
