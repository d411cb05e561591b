"""Creates a GKE cluster and waits for the operation to finish.

    python example/create_cluster.py --project my-project --zone us-central1-c --name my-cluster
"""
import asyncio

import click

from cluster_manager_client.cluster_manager_client import (
    DEFAULT_BASE_URL,
    ClusterManagerClient,
)
from cluster_manager_client.models import FibonacciPollingConfig


async def report(snapshot):
    if snapshot.next_delay_ms is not None:
        click.echo(
            f"Cluster creation not complete. will try after {snapshot.next_delay_ms / 1000}s delay..."
        )


async def create_cluster(project, zone, name, network, base_url, access_token, config):
    async with ClusterManagerClient(
        project, base_url=base_url, access_token=access_token, config=config
    ) as client:
        operation = await client.create_cluster(
            zone,
            {
                "name": name,
                "network": network,
                "initialNodeCount": 2,
                "nodeConfig": {"machineType": "e2-standard-2"},
            },
        )
        return await client.wait_for_operation(operation, zone, on_attempt=report)


@click.command()
@click.option("--project", envvar="GOOGLE_CLOUD_PROJECT", required=True, help="GCP project id")
@click.option("--zone", default="us-central1-c", help="Location where the cluster is to be created")
@click.option("--name", required=True, help="Name to be given to the GKE cluster")
@click.option("--network", default="default", help="VPC network the cluster nodes attach to")
@click.option("--base-url", default=DEFAULT_BASE_URL, help="Cluster Manager API endpoint")
@click.option("--access-token", envvar="GKE_ACCESS_TOKEN", help="OAuth2 access token")
@click.option("--initial-delay-ms", default=1000, type=int, help="First delay between status checks")
@click.option("--max-attempts", default=20, type=int, help="Status checks before giving up")
def main(project, zone, name, network, base_url, access_token, initial_delay_ms, max_attempts):
    config = FibonacciPollingConfig(
        initial_delay_ms=initial_delay_ms, max_attempts=max_attempts
    )
    result = asyncio.run(
        create_cluster(project, zone, name, network, base_url, access_token, config)
    )
    click.echo(result.describe("Cluster creation"))
    if not result.succeeded:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
