"""Unit tests for Backups API endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from nodekeeper.api.dependencies import get_runtime, reset_runtime
from nodekeeper.api.errors import BackupError, InstanceNotFoundError
from nodekeeper.datadir import BackupInfo
from nodekeeper.main import app


@pytest.fixture
def mock_runtime() -> MagicMock:
    """Create mock runtime."""
    runtime = MagicMock()
    runtime.backups = MagicMock()
    runtime.backups.backup_instance = AsyncMock(return_value="mock-avs-default-1696340865")
    runtime.backups.list_backups = MagicMock(return_value=[])
    return runtime


@pytest.fixture
def client(mock_runtime: MagicMock) -> TestClient:
    """Create test client with mocked runtime."""
    app.dependency_overrides[get_runtime] = lambda: mock_runtime

    with patch("nodekeeper.main.cleanup_orphaned_containers", AsyncMock()):
        with TestClient(app) as client:
            yield client

    app.dependency_overrides.clear()
    reset_runtime()


class TestBackupsAPI:
    """Tests for Backups API endpoints."""

    def test_create_backup(self, client: TestClient, mock_runtime: MagicMock) -> None:
        response = client.post("/api/v1/instances/mock-avs-default/backups")

        assert response.status_code == 200
        assert response.json() == {"backup_id": "mock-avs-default-1696340865"}
        mock_runtime.backups.backup_instance.assert_called_once_with("mock-avs-default")

    def test_create_backup_unknown_instance(
        self, client: TestClient, mock_runtime: MagicMock
    ) -> None:
        mock_runtime.backups.backup_instance.side_effect = InstanceNotFoundError(
            "instance not found: nope"
        )

        response = client.post("/api/v1/instances/nope/backups")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "INSTANCE_NOT_FOUND"

    def test_create_backup_failure(self, client: TestClient, mock_runtime: MagicMock) -> None:
        mock_runtime.backups.backup_instance.side_effect = BackupError(
            'snapshotter failed for service "main-service" with error: boom'
        )

        response = client.post("/api/v1/instances/mock-avs-default/backups")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "BACKUP_FAILED"
        assert "main-service" in error["message"]

    def test_list_backups(self, client: TestClient, mock_runtime: MagicMock) -> None:
        mock_runtime.backups.list_backups.return_value = [
            BackupInfo(
                backup_id="mock-avs-default-1696340865",
                instance_id="mock-avs-default",
                timestamp=datetime.fromtimestamp(1696340865, tz=timezone.utc),
                size_bytes=4096,
            )
        ]

        response = client.get("/api/v1/backups")

        assert response.status_code == 200
        backups = response.json()["backups"]
        assert len(backups) == 1
        assert backups[0]["backup_id"] == "mock-avs-default-1696340865"
        assert backups[0]["size_bytes"] == 4096

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "nodekeeper_" in response.text


class TestApiKey:
    """Tests for the API key middleware."""

    @pytest.fixture
    def keyed_config(self):
        config = MagicMock()
        config.server.api_key = "secret"
        with patch("nodekeeper.main.get_config", return_value=config):
            yield config

    def test_rejects_missing_key(self, client: TestClient, keyed_config) -> None:
        response = client.get("/api/v1/backups")

        assert response.status_code == 401

    def test_accepts_bearer_key(self, client: TestClient, keyed_config) -> None:
        response = client.get("/api/v1/backups", headers={"Authorization": "Bearer secret"})

        assert response.status_code == 200

    def test_health_is_open(self, client: TestClient, keyed_config) -> None:
        assert client.get("/health").status_code == 200
