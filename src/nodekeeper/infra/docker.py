"""Docker Engine API client for nodekeeper.

Provides async Docker API access for containers, networks and images.
Supports both Unix socket and TCP connections.
"""

import json
import logging
import struct
from enum import Enum

import httpx
from pydantic import BaseModel

from nodekeeper.config import DockerConfig, get_config

logger = logging.getLogger(__name__)


class DockerWaitError(Exception):
    """Raised when the daemon reports an error while waiting for a container."""

    pass


class DockerBuildError(Exception):
    """Raised when an image build reports an error in its progress stream."""

    pass


# =============================================================================
# Pydantic Models
# =============================================================================


class MountType(str, Enum):
    BIND = "bind"
    VOLUME = "volume"


class Mount(BaseModel):
    """A bind or volume mount for a container."""

    type: MountType
    source: str
    target: str
    read_only: bool = False

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API Mounts[] format."""
        return {
            "Type": self.type.value,
            "Source": self.source,
            "Target": self.target,
            "ReadOnly": self.read_only,
        }


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    network_mode: str | None = None
    mounts: list[Mount] = []
    volumes_from: list[str] = []
    auto_remove: bool = False

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {
            "Mounts": [m.to_api() for m in self.mounts],
            "AutoRemove": self.auto_remove,
        }
        if self.network_mode:
            result["NetworkMode"] = self.network_mode
        if self.volumes_from:
            result["VolumesFrom"] = self.volumes_from
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str | None = None
    cmd: list[str] = []
    labels: dict[str, str] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "Cmd": self.cmd,
            "HostConfig": self.host_config.to_api(),
        }
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Docker Client (Singleton)
# =============================================================================


class DockerClient:
    """Async Docker API client."""

    def __init__(self, config: DockerConfig | None = None) -> None:
        self._config = config or get_config().docker
        self._host = self._config.host
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> DockerConfig:
        return self._config

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        timeout = self._config.api_timeout
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        else:
            base_url = self._host
            if base_url.startswith("tcp://"):
                base_url = base_url.replace("tcp://", "http://")
            return httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# Global singleton
_docker_client: DockerClient | None = None


def get_docker_client() -> DockerClient:
    """Get the global Docker client singleton."""
    global _docker_client
    if _docker_client is None:
        _docker_client = DockerClient()
    return _docker_client


async def close_docker() -> None:
    """Close the global Docker client."""
    global _docker_client
    if _docker_client:
        await _docker_client.close()
        _docker_client = None


def demux_logs(raw: bytes) -> bytes:
    """Strip Docker's stdout/stderr multiplexing headers.

    Containers without a TTY return logs as frames of an 8-byte header
    (stream type, 3 zero bytes, big-endian payload size) followed by the
    payload. Anything that does not parse as frames is returned unchanged.
    """
    out = bytearray()
    pos = 0
    while pos < len(raw):
        header = raw[pos : pos + 8]
        if len(header) < 8 or header[0] not in (0, 1, 2) or header[1:4] != b"\x00\x00\x00":
            return raw
        (size,) = struct.unpack(">I", header[4:8])
        out += raw[pos + 8 : pos + 8 + size]
        pos += 8 + size
    return bytes(out)


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List containers."""
        client = await self._docker.get()
        params: dict = {"all": "true"}
        if filters:
            params["filters"] = json.dumps(filters)
        resp = await client.get("/containers/json", params=params)
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> str:
        """Create a container and return its ID."""
        client = await self._docker.get()
        params = {"name": config.name} if config.name else None
        resp = await client.post("/containers/create", params=params, json=config.to_api())
        resp.raise_for_status()
        container_id = resp.json()["Id"]
        logger.debug("Created container %s from image %s", container_id, config.image)
        return container_id

    async def start(self, container_id: str) -> None:
        """Start a container."""
        client = await self._docker.get()
        resp = await client.post(f"/containers/{container_id}/start")
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.debug("Started container %s", container_id)

    async def stop(self, container_id: str, timeout: int = 10) -> None:
        """Stop a container."""
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{container_id}/stop", params={"t": str(timeout)}
        )
        if resp.status_code not in (204, 304, 404):
            resp.raise_for_status()
        logger.debug("Stopped container %s", container_id)

    async def remove(self, container_id: str, force: bool = False) -> None:
        """Remove a container."""
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{container_id}",
            params={"force": "true" if force else "false"},
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", container_id)
            return
        resp.raise_for_status()
        logger.debug("Removed container %s", container_id)

    async def wait(
        self,
        container_id: str,
        condition: str = "next-exit",
        timeout: float | None = None,
    ) -> int:
        """Block until the container reaches ``condition`` and return its exit code.

        ``timeout=None`` waits without limit.
        """
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{container_id}/wait",
            params={"condition": condition},
            timeout=httpx.Timeout(self._docker.config.api_timeout, read=timeout),
        )
        resp.raise_for_status()
        data = resp.json()
        error = (data.get("Error") or {}).get("Message")
        if error:
            raise DockerWaitError(error)
        exit_code = data.get("StatusCode", -1)
        logger.debug("Container %s exited with code %d", container_id, exit_code)
        return exit_code

    async def logs(self, container_id: str, stdout: bool = True, stderr: bool = True) -> bytes:
        """Get the complete logs of a container (no follow)."""
        client = await self._docker.get()
        params = {
            "stdout": "true" if stdout else "false",
            "stderr": "true" if stderr else "false",
            "follow": "false",
        }
        resp = await client.get(f"/containers/{container_id}/logs", params=params)
        resp.raise_for_status()
        return demux_logs(resp.content)


# =============================================================================
# Network API
# =============================================================================


class NetworkAPI:
    """Docker Network API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def connect(self, network: str, container_id: str) -> None:
        """Connect a container to a network."""
        client = await self._docker.get()
        resp = await client.post(
            f"/networks/{network}/connect", json={"Container": container_id}
        )
        resp.raise_for_status()
        logger.debug("Connected container %s to network %s", container_id, network)


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def exists(self, image_ref: str) -> bool:
        """Check if image exists locally."""
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True

    async def build_from_remote(self, remote: str, tag: str) -> None:
        """Build an image from a remote context (git URL or HTTP tarball).

        The daemon reports build progress as a stream of JSON records; an
        ``error`` record means the build failed even though the HTTP status
        is 200.
        """
        client = await self._docker.get()
        logger.info("Building image %s from %s", tag, remote)
        async with client.stream(
            "POST",
            "/build",
            params={"remote": remote, "t": tag, "rm": "1", "forcerm": "1"},
            timeout=self._docker.config.build_timeout,
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                record = json.loads(line)
                if "error" in record:
                    raise DockerBuildError(record["error"].strip())
                if "stream" in record:
                    logger.debug(record["stream"].rstrip())
        logger.info("Built image %s", tag)
