"""Unit tests for the Docker Engine API client."""

import json
import struct

import httpx
import pytest

from nodekeeper.config import DockerConfig
from nodekeeper.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerBuildError,
    DockerClient,
    DockerWaitError,
    HostConfig,
    ImageAPI,
    Mount,
    MountType,
    NetworkAPI,
    demux_logs,
)


def _frame(stream: int, payload: bytes) -> bytes:
    return bytes([stream, 0, 0, 0]) + struct.pack(">I", len(payload)) + payload


class FakeDaemon:
    """Routes requests to canned responses and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"message": "not found"})
        return response


@pytest.fixture
def daemon() -> FakeDaemon:
    return FakeDaemon()


@pytest.fixture
def docker(daemon: FakeDaemon) -> DockerClient:
    client = DockerClient(DockerConfig(host="tcp://docker:2375"))
    client._client = httpx.AsyncClient(
        transport=httpx.MockTransport(daemon.handler),
        base_url="http://docker",
    )
    return client


class TestModels:
    """Tests for API request models."""

    def test_container_config_to_api(self) -> None:
        config = ContainerConfig(
            image="snapshotter:v0.2.0",
            name="nodekeeper-run-1",
            cmd=["backup"],
            labels={"nodekeeper.managed": "true"},
            host_config=HostConfig(
                mounts=[Mount(type=MountType.BIND, source="/a", target="/b", read_only=True)],
                volumes_from=["mock-avs-main"],
            ),
        )

        assert config.to_api() == {
            "Image": "snapshotter:v0.2.0",
            "Cmd": ["backup"],
            "Labels": {"nodekeeper.managed": "true"},
            "HostConfig": {
                "Mounts": [{"Type": "bind", "Source": "/a", "Target": "/b", "ReadOnly": True}],
                "AutoRemove": False,
                "VolumesFrom": ["mock-avs-main"],
            },
        }


class TestDemuxLogs:
    """Tests for demux_logs."""

    def test_strips_frame_headers(self) -> None:
        raw = _frame(1, b"hello ") + _frame(2, b"world\n")

        assert demux_logs(raw) == b"hello world\n"

    def test_tty_output_unchanged(self) -> None:
        assert demux_logs(b"plain output\n") == b"plain output\n"

    def test_empty(self) -> None:
        assert demux_logs(b"") == b""


class TestContainerAPI:
    """Tests for ContainerAPI."""

    async def test_create(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("POST", "/containers/create")] = httpx.Response(201, json={"Id": "abc"})

        container_id = await ContainerAPI(docker).create(
            ContainerConfig(image="img", name="job-1")
        )

        assert container_id == "abc"
        request = daemon.requests[0]
        assert request.url.params["name"] == "job-1"
        assert json.loads(request.content)["Image"] == "img"

    async def test_wait_returns_exit_code(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("POST", "/containers/abc/wait")] = httpx.Response(
            200, json={"StatusCode": 3}
        )

        assert await ContainerAPI(docker).wait("abc") == 3
        assert daemon.requests[0].url.params["condition"] == "next-exit"

    async def test_wait_error(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("POST", "/containers/abc/wait")] = httpx.Response(
            200, json={"StatusCode": -1, "Error": {"Message": "container vanished"}}
        )

        with pytest.raises(DockerWaitError, match="container vanished"):
            await ContainerAPI(docker).wait("abc")

    async def test_logs_demuxed(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("GET", "/containers/abc/logs")] = httpx.Response(
            200, content=_frame(1, b"out\n") + _frame(2, b"err\n")
        )

        logs = await ContainerAPI(docker).logs("abc")

        assert logs == b"out\nerr\n"
        assert daemon.requests[0].url.params["follow"] == "false"

    async def test_remove_missing_is_ignored(self, docker: DockerClient) -> None:
        await ContainerAPI(docker).remove("gone", force=True)

    async def test_remove_conflict_raises(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("DELETE", "/containers/abc")] = httpx.Response(
            409, json={"message": "removal already in progress"}
        )

        with pytest.raises(httpx.HTTPStatusError):
            await ContainerAPI(docker).remove("abc")

    async def test_list_filters(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("GET", "/containers/json")] = httpx.Response(200, json=[{"Id": "abc"}])

        containers = await ContainerAPI(docker).list(
            filters={"label": ["nodekeeper.managed=true"]}
        )

        assert containers == [{"Id": "abc"}]
        assert json.loads(daemon.requests[0].url.params["filters"]) == {
            "label": ["nodekeeper.managed=true"]
        }


class TestNetworkAPI:
    """Tests for NetworkAPI."""

    async def test_connect(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("POST", "/networks/eigenlayer/connect")] = httpx.Response(200)

        await NetworkAPI(docker).connect("eigenlayer", "abc")

        assert json.loads(daemon.requests[0].content) == {"Container": "abc"}

    async def test_connect_unknown_network(self, docker: DockerClient) -> None:
        with pytest.raises(httpx.HTTPStatusError):
            await NetworkAPI(docker).connect("missing", "abc")


class TestImageAPI:
    """Tests for ImageAPI."""

    async def test_exists(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        daemon.routes[("GET", "/images/snapshotter:v0.2.0/json")] = httpx.Response(200, json={})

        assert await ImageAPI(docker).exists("snapshotter:v0.2.0") is True
        assert await ImageAPI(docker).exists("other:latest") is False

    async def test_build_from_remote(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        body = "\n".join(
            [
                json.dumps({"stream": "Step 1/3 : FROM alpine\n"}),
                json.dumps({"stream": "Successfully built 123\n"}),
            ]
        )
        daemon.routes[("POST", "/build")] = httpx.Response(200, content=body.encode())

        await ImageAPI(docker).build_from_remote("github.com/x/y.git#v0.2.0", "y:v0.2.0")

        params = daemon.requests[0].url.params
        assert params["remote"] == "github.com/x/y.git#v0.2.0"
        assert params["t"] == "y:v0.2.0"

    async def test_build_error_record(self, docker: DockerClient, daemon: FakeDaemon) -> None:
        body = "\n".join(
            [
                json.dumps({"stream": "Step 1/3 : FROM alpine\n"}),
                json.dumps({"error": "pull access denied\n"}),
            ]
        )
        daemon.routes[("POST", "/build")] = httpx.Response(200, content=body.encode())

        with pytest.raises(DockerBuildError, match="pull access denied"):
            await ImageAPI(docker).build_from_remote("github.com/x/y.git#v0.2.0", "y:v0.2.0")
