"""nodekeeper infrastructure layer."""

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
    close_docker,
    get_docker_client,
)

__all__ = [
    "ContainerAPI",
    "ContainerConfig",
    "DockerBuildError",
    "DockerClient",
    "DockerWaitError",
    "HostConfig",
    "ImageAPI",
    "Mount",
    "MountType",
    "NetworkAPI",
    "close_docker",
    "get_docker_client",
]
