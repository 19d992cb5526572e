"""nodekeeper configuration using pydantic-settings.

Configuration hierarchy:
- DockerConfig: Docker Engine connection and run settings
- SnapshotterSettings: Pinned snapshotter image used by backup jobs
- DataConfig: Local data directory (instances, backups)
- LoggingConfig: Logging behavior
- ServerConfig: HTTP server
- NodeKeeperConfig: Main config aggregating all sub-configs

Environment variable prefix: NODEKEEPER_
Example: NODEKEEPER_DOCKER_NETWORK=eigenlayer
"""

import os
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_path() -> Path:
    # $XDG_DATA_HOME/.eigen, or ~/.local/share/.eigen when unset
    user_data_home = os.environ.get("XDG_DATA_HOME")
    if user_data_home:
        return Path(user_data_home) / ".eigen"
    return Path.home() / ".local" / "share" / ".eigen"


class DockerConfig(BaseSettings):
    """Docker runtime configuration."""

    model_config = SettingsConfigDict(env_prefix="NODEKEEPER_DOCKER_")

    # Connection
    host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Docker daemon socket or TCP address",
    )
    network: str | None = Field(
        default=None,
        description="Network snapshot containers are attached to (None or 'host' skips attach)",
    )

    # Timeouts
    api_timeout: float = Field(default=30.0, description="Docker API call timeout (seconds)")
    build_timeout: float = Field(default=900.0, description="Image build timeout (seconds)")
    run_timeout: float | None = Field(
        default=None,
        description="Container run timeout (seconds). None waits until the container exits",
    )


class SnapshotterSettings(BaseSettings):
    """Snapshotter image used to tar service volumes into a backup.

    The image is always built from a pinned tag of the snapshotter
    repository, never from a floating reference.
    """

    model_config = SettingsConfigDict(env_prefix="NODEKEEPER_SNAPSHOTTER_")

    repo: str = Field(
        default="github.com/NethermindEth/docker-volumes-snapshotter",
        description="Snapshotter source repository",
    )
    version: str = Field(default="v0.2.0", description="Pinned snapshotter tag")
    image_name: str = Field(default="nodekeeper-snapshotter", description="Local image name")

    @property
    def image(self) -> str:
        return f"{self.image_name}:{self.version}"

    @property
    def remote_context(self) -> str:
        return f"{self.repo}.git#{self.version}"


class DataConfig(BaseSettings):
    """Local data directory configuration."""

    model_config = SettingsConfigDict(env_prefix="NODEKEEPER_DATA_")

    path: Path = Field(
        default_factory=_default_data_path,
        description="Root of the data directory (nodes/, backups/)",
    )
    temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Directory for snapshot job config files",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats for different environments:
    - text: Human-readable for local development
    - json: Structured logging for production (log aggregation)
    """

    model_config = SettingsConfigDict(env_prefix="NODEKEEPER_LOGGING_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="nodekeeper", description="Service identifier in logs")


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="NODEKEEPER_SERVER_")

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8091, description="Server port")
    api_key: str = Field(default="", description="API key for authentication")


class NodeKeeperConfig(BaseSettings):
    """Main configuration aggregating all sub-configs.

    Environment variable prefix: NODEKEEPER_
    Sub-configs use their own prefixes (NODEKEEPER_DOCKER_, NODEKEEPER_DATA_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="NODEKEEPER_",
        env_nested_delimiter="__",
    )

    docker: DockerConfig = Field(default_factory=DockerConfig)
    snapshotter: SnapshotterSettings = Field(default_factory=SnapshotterSettings)
    data: DataConfig = Field(default_factory=DataConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


@lru_cache
def get_config() -> NodeKeeperConfig:
    """Get cached configuration singleton."""
    return NodeKeeperConfig()
