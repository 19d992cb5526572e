"""Fixtures for nodekeeper unit tests."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from nodekeeper.datadir import DataDir
from nodekeeper.infra import ContainerAPI, ImageAPI, NetworkAPI

COMPOSE_THREE_SERVICES = """\
services:
  main-service:
    image: mock-avs:latest
    container_name: mock-avs-main
    volumes:
      - mock-data:/data
      - ./config:/config:ro
  option-returner:
    image: option-returner:latest
    container_name: mock-avs-option-returner
  health-checker:
    image: health-checker:latest
    volumes:
      - type: volume
        source: health
        target: /health
volumes:
  mock-data:
  health:
"""


@pytest.fixture
def mock_container_api() -> AsyncMock:
    """Mock ContainerAPI for testing."""
    api = AsyncMock(spec=ContainerAPI)
    api.list = AsyncMock(return_value=[])
    api.create = AsyncMock(return_value="c0ffee")
    api.start = AsyncMock()
    api.stop = AsyncMock()
    api.remove = AsyncMock()
    api.logs = AsyncMock(return_value=b"")
    api.wait = AsyncMock(return_value=0)
    return api


@pytest.fixture
def mock_network_api() -> AsyncMock:
    """Mock NetworkAPI for testing."""
    api = AsyncMock(spec=NetworkAPI)
    api.connect = AsyncMock()
    return api


@pytest.fixture
def mock_image_api() -> AsyncMock:
    """Mock ImageAPI for testing."""
    api = AsyncMock(spec=ImageAPI)
    api.exists = AsyncMock(return_value=True)
    api.build_from_remote = AsyncMock()
    return api


def write_instance(
    root: Path,
    instance_id: str,
    compose: str = COMPOSE_THREE_SERVICES,
) -> Path:
    """Create an installed instance directory under ``root``."""
    path = root / "nodes" / instance_id
    path.mkdir(parents=True)
    (path / "state.json").write_text(
        json.dumps(
            {
                "name": "mock-avs",
                "url": "https://github.com/NethermindEth/mock-avs",
                "version": "v0.1.0",
                "profile": "option-returner",
                "tag": "default",
            }
        )
    )
    (path / "docker-compose.yml").write_text(compose)
    (path / ".env").write_text("MAIN_SERVICE_NAME=main-service\n")
    return path


@pytest.fixture
def data_dir(tmp_path: Path) -> DataDir:
    """Data directory with one installed instance ``mock-avs-default``."""
    root = tmp_path / "data"
    write_instance(root, "mock-avs-default")
    return DataDir(root)


@pytest.fixture
def make_instance():
    """Factory creating extra instances: make_instance(root, instance_id, compose)."""
    return write_instance
