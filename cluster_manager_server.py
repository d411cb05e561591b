import random
import uuid
from datetime import datetime, timezone

from aiohttp import web
from loguru import logger

LOCATION_ROUTE = "/v1/projects/{project}/locations/{location}"
OPERATION_ROUTE = LOCATION_ROUTE + "/operations/{operation:[^/:]+}"
CLUSTER_ROUTE = LOCATION_ROUTE + "/clusters/{cluster}"


def _error(status: int, message: str) -> web.Response:
    return web.json_response(
        {"error": {"code": status, "message": message}}, status=status
    )


class ClusterManagerServer:
    """In-process stand-in for the Cluster Manager API.

    Every mutating call starts an operation that reports PENDING, then
    RUNNING, and DONE once completion_time seconds have passed.
    """

    def __init__(self, completion_time: float = 10.0, error_rate: float = 0.0):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.clusters = {}
        self.operations = {}
        self.authorizations = []
        self.runner = None
        self.app = web.Application(middlewares=[self.record_authorization])
        self.app.router.add_post(LOCATION_ROUTE + "/clusters", self.handle_create_cluster)
        self.app.router.add_get(LOCATION_ROUTE + "/clusters", self.handle_list_clusters)
        self.app.router.add_delete(CLUSTER_ROUTE, self.handle_delete_cluster)
        self.app.router.add_put(
            CLUSTER_ROUTE + "/nodePools/{node_pool}", self.handle_update_node_pool
        )
        self.app.router.add_get(OPERATION_ROUTE, self.handle_get_operation)
        self.app.router.add_post(OPERATION_ROUTE + ":cancel", self.handle_cancel_operation)
        self.logger = logger

    @web.middleware
    async def record_authorization(self, request, handler):
        self.authorizations.append(request.headers.get("Authorization"))
        return await handler(request)

    def _start_operation(self, project: str, location: str, operation_type: str, target: str) -> dict:
        name = f"operation-{uuid.uuid4().hex[:12]}"
        self.operations[(project, location, name)] = {
            "name": name,
            "zone": location,
            "operationType": operation_type,
            "targetLink": target,
            "started": datetime.now(),
            "startTime": datetime.now(timezone.utc).isoformat(),
            "cancelled": None,
        }
        self.logger.info(f"Started {operation_type} operation {name} on {target}")
        return self._render_operation(self.operations[(project, location, name)])

    def _status(self, operation: dict) -> str:
        if operation["cancelled"] is not None:
            since_cancel = (datetime.now() - operation["cancelled"]).total_seconds()
            return "ABORTING" if since_cancel < self.completion_time / 10 else "ABORTED"

        elapsed = (datetime.now() - operation["started"]).total_seconds()
        if elapsed >= self.completion_time:
            return "DONE"
        if elapsed < self.completion_time / 10:
            return "PENDING"
        return "RUNNING"

    def _render_operation(self, operation: dict) -> dict:
        body = {k: v for k, v in operation.items() if k not in ("started", "cancelled")}
        body["status"] = self._status(operation)
        return body

    async def handle_create_cluster(self, request):
        project = request.match_info["project"]
        location = request.match_info["location"]
        payload = await request.json()
        cluster = payload.get("cluster") or {}
        if not cluster.get("name"):
            return _error(400, "Cluster.name must be set")

        key = (project, location, cluster["name"])
        if key in self.clusters:
            return _error(409, f"Already exists: {cluster['name']}")

        operation = self._start_operation(project, location, "CREATE_CLUSTER", cluster["name"])
        self.clusters[key] = dict(cluster, location=location, operation=operation["name"])
        return web.json_response(operation)

    async def handle_list_clusters(self, request):
        project = request.match_info["project"]
        location = request.match_info["location"]
        clusters = []
        for (cluster_project, cluster_location, _), cluster in self.clusters.items():
            if cluster_project != project or location not in ("-", cluster_location):
                continue
            create_op = self.operations[(project, cluster_location, cluster["operation"])]
            status = "RUNNING" if self._status(create_op) == "DONE" else "PROVISIONING"
            body = {k: v for k, v in cluster.items() if k != "operation"}
            clusters.append(dict(body, status=status))
        return web.json_response({"clusters": clusters})

    async def handle_delete_cluster(self, request):
        project = request.match_info["project"]
        location = request.match_info["location"]
        name = request.match_info["cluster"]
        if self.clusters.pop((project, location, name), None) is None:
            return _error(404, f"Not found: cluster {name}")
        return web.json_response(
            self._start_operation(project, location, "DELETE_CLUSTER", name)
        )

    async def handle_update_node_pool(self, request):
        project = request.match_info["project"]
        location = request.match_info["location"]
        name = request.match_info["cluster"]
        if (project, location, name) not in self.clusters:
            return _error(404, f"Not found: cluster {name}")
        target = f"{name}/nodePools/{request.match_info['node_pool']}"
        return web.json_response(
            self._start_operation(project, location, "UPGRADE_NODES", target)
        )

    async def handle_get_operation(self, request):
        info = request.match_info
        operation = self.operations.get((info["project"], info["location"], info["operation"]))
        if operation is None:
            self.logger.info(f"Unknown operation {info['operation']}")
            return _error(404, f"Not found: operation {info['operation']}")

        if random.random() < self.error_rate:
            self.logger.info("Returning error status")
            return _error(500, "Internal error")

        body = self._render_operation(operation)
        self.logger.info(f"Returning {body['status']} status for {body['name']}")
        return web.json_response(body)

    async def handle_cancel_operation(self, request):
        info = request.match_info
        operation = self.operations.get((info["project"], info["location"], info["operation"]))
        if operation is None:
            return _error(404, f"Not found: operation {info['operation']}")
        if self._status(operation) == "DONE":
            return _error(400, f"Operation {info['operation']} is already done")
        operation["cancelled"] = datetime.now()
        return web.json_response({})

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
