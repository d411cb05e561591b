import asyncio
import threading
from typing import Iterator, Tuple

import pytest
from click.testing import CliRunner
from cluster_manager_server import ClusterManagerServer
from example import create_cluster, delete_cluster

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest.fixture
def server(unused_tcp_port) -> Iterator[Tuple[ClusterManagerServer, str]]:
    """Run a ClusterManagerServer on its own event loop so the commands can asyncio.run."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()

    server_instance = ClusterManagerServer(completion_time=0.5)
    asyncio.run_coroutine_threadsafe(
        server_instance.start(port=unused_tcp_port), loop
    ).result(timeout=5)
    try:
        yield server_instance, BASE_URL_TEMPLATE.format(unused_tcp_port)
    finally:
        asyncio.run_coroutine_threadsafe(server_instance.stop(), loop).result(timeout=5)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=5)
        loop.close()


def command_args(base_url, name, *extra):
    return [
        "--project", "test-project",
        "--zone", "us-central1-c",
        "--name", name,
        "--base-url", base_url,
        "--initial-delay-ms", "50",
        *extra,
    ]


def test_create_cluster(server):
    _, base_url = server
    runner = CliRunner()
    result = runner.invoke(create_cluster.main, command_args(base_url, "c1"))
    assert result.exit_code == 0
    assert "Cluster creation not complete. will try after" in result.output
    assert "Cluster creation completed." in result.output


def test_create_cluster_gives_up(server):
    server_instance, base_url = server
    server_instance.completion_time = 30.0
    runner = CliRunner()
    result = runner.invoke(
        create_cluster.main, command_args(base_url, "slow", "--max-attempts", "1")
    )
    assert result.exit_code == 1
    assert "Cluster creation not complete. max retries reached, giving up." in result.output


def test_delete_cluster(server):
    server_instance, base_url = server
    runner = CliRunner()
    created = runner.invoke(create_cluster.main, command_args(base_url, "c1"))
    assert created.exit_code == 0

    result = runner.invoke(delete_cluster.main, command_args(base_url, "c1"))
    assert result.exit_code == 0
    assert "Cluster deletion completed." in result.output
    assert server_instance.clusters == {}


def test_delete_missing_cluster_fails(server):
    _, base_url = server
    runner = CliRunner()
    result = runner.invoke(delete_cluster.main, command_args(base_url, "missing"))
    assert result.exit_code != 0
    assert "Cluster deletion completed." not in result.output
