import asyncio

from cluster_manager_server import ClusterManagerServer
from cluster_manager_client.cluster_manager_client import ClusterManagerClient
from cluster_manager_client.models import FibonacciPollingConfig


async def attempt_made(snapshot):
    print(f"Attempt {snapshot.attempt}: {snapshot.status.value}")
    if snapshot.next_delay_ms is not None:
        print(f"Next check in {snapshot.next_delay_ms / 1000}s")


async def main():
    PORT = 8000
    LOCATION = "us-central1-c"
    server = ClusterManagerServer(completion_time=8.0)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = FibonacciPollingConfig(initial_delay_ms=500, max_attempts=10)

    async with ClusterManagerClient(
        "sample-project", base_url=f"http://localhost:{PORT}", config=config
    ) as client:
        try:
            operation = await client.create_cluster(
                LOCATION,
                {
                    "name": "sample-gke-cluster",
                    "network": "default",
                    "initialNodeCount": 2,
                    "nodeConfig": {"machineType": "e2-standard-2"},
                },
            )
            result = await client.wait_for_operation(
                operation, LOCATION, on_attempt=attempt_made
            )
            print(result.describe("Cluster creation"))
            print(f"Total time: {result.elapsed_time:.6f}s")

            operation = await client.delete_cluster(LOCATION, "sample-gke-cluster")
            result = await client.wait_for_operation(
                operation, LOCATION, on_attempt=attempt_made
            )
            print(result.describe("Cluster deletion"))
        except Exception as e:
            print(f"Error occurred: {e}")

    await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
