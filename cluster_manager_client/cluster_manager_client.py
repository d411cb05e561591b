import asyncio
import re
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger
from cluster_manager_client.models import (
    Cluster,
    FibonacciPollingConfig,
    Operation,
    PollResult,
)
from cluster_manager_client.operation_poller import OperationPoller, SnapshotCallback

DEFAULT_BASE_URL = "https://container.googleapis.com"

_LOCATION_PATH = re.compile(r"^projects/(?P<project>[^/]+)/locations/(?P<location>[^/]+)$")
_CLUSTER_PATH = re.compile(
    r"^projects/(?P<project>[^/]+)/locations/(?P<location>[^/]+)"
    r"/clusters/(?P<cluster>[^/]+)$"
)
_NODE_POOL_PATH = re.compile(
    r"^projects/(?P<project>[^/]+)/locations/(?P<location>[^/]+)"
    r"/clusters/(?P<cluster>[^/]+)/nodePools/(?P<node_pool>[^/]+)$"
)
_OPERATION_PATH = re.compile(
    r"^projects/(?P<project>[^/]+)/locations/(?P<location>[^/]+)"
    r"/operations/(?P<operation>[^/]+)$"
)


def location_path(project: str, location: str) -> str:
    return f"projects/{project}/locations/{location}"


def cluster_path(project: str, location: str, cluster: str) -> str:
    return f"{location_path(project, location)}/clusters/{cluster}"


def node_pool_path(project: str, location: str, cluster: str, node_pool: str) -> str:
    return f"{cluster_path(project, location, cluster)}/nodePools/{node_pool}"


def operation_path(project: str, location: str, operation: str) -> str:
    return f"{location_path(project, location)}/operations/{operation}"


def _match(pattern: re.Pattern, name: str, kind: str) -> Dict[str, str]:
    match = pattern.match(name)
    if match is None:
        raise ValueError(f"{name!r} is not a valid {kind} name")
    return match.groupdict()


def match_location_path(name: str) -> Dict[str, str]:
    return _match(_LOCATION_PATH, name, "location")


def match_cluster_path(name: str) -> Dict[str, str]:
    return _match(_CLUSTER_PATH, name, "cluster")


def match_node_pool_path(name: str) -> Dict[str, str]:
    return _match(_NODE_POOL_PATH, name, "node pool")


def match_operation_path(name: str) -> Dict[str, str]:
    return _match(_OPERATION_PATH, name, "operation")


class ClusterManagerClient:
    """Minimal asyncio client for the Cluster Manager v1 REST API.

    Use it as an async context manager so the underlying aiohttp session
    gets closed, unless a session is supplied by the caller.
    """

    def __init__(
        self,
        project_id: str,
        base_url: str = DEFAULT_BASE_URL,
        access_token: Optional[str] = None,
        config: Optional[FibonacciPollingConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.project_id = project_id
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.config = config or FibonacciPollingConfig()
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ClusterManagerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            headers = {}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            self._session = aiohttp.ClientSession(headers=headers)
        return self._session

    async def invoke(
        self, method: str, path: str, body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Sends one request to /v1/{path} and returns the decoded JSON body"""
        url = f"{self.base_url}/v1/{path}"
        session = self._get_session()

        try:
            async with session.request(method, url, json=body) as response:
                response.raise_for_status()
                if response.content_length == 0:
                    return {}
                return await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {method} {url}: {e.message}")
            raise
        except Exception as e:
            self.logger.error(f"Unexpected error: {e}")
            raise

    async def get_operation(self, name: str) -> Operation:
        data = await self.invoke("GET", name)
        return Operation.model_validate(data)

    async def cancel_operation(self, name: str) -> None:
        await self.invoke("POST", f"{name}:cancel")

    async def create_cluster(self, location: str, cluster: Dict[str, Any]) -> Operation:
        parent = location_path(self.project_id, location)
        data = await self.invoke("POST", f"{parent}/clusters", {"cluster": cluster})
        return Operation.model_validate(data)

    async def delete_cluster(self, location: str, cluster_name: str) -> Operation:
        data = await self.invoke(
            "DELETE", cluster_path(self.project_id, location, cluster_name)
        )
        return Operation.model_validate(data)

    async def update_node_pool(
        self, location: str, cluster_name: str, node_pool: str, **fields: Any
    ) -> Operation:
        """Updates a node pool, fields are sent as is (nodeVersion, imageType, ...)"""
        name = node_pool_path(self.project_id, location, cluster_name, node_pool)
        data = await self.invoke("PUT", name, dict(fields))
        return Operation.model_validate(data)

    async def list_clusters(self, location: str = "-") -> List[Cluster]:
        parent = location_path(self.project_id, location)
        data = await self.invoke("GET", f"{parent}/clusters")
        return [Cluster.model_validate(c) for c in data.get("clusters", [])]

    async def wait_for_operation(
        self,
        operation: Operation,
        location: str,
        cancel_event: Optional[asyncio.Event] = None,
        on_attempt: Optional[SnapshotCallback] = None,
        on_status_change: Optional[SnapshotCallback] = None,
    ) -> PollResult:
        """Polls the operation started by a mutating call until it is DONE"""
        handle = operation_path(self.project_id, location, operation.name)
        poller = OperationPoller(
            config=self.config,
            on_attempt=on_attempt,
            on_status_change=on_status_change,
        )
        return await poller.poll_until_done(handle, self.get_operation, cancel_event)
