"""Backup API endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from nodekeeper.api.dependencies import get_runtime
from nodekeeper.datadir import BackupInfo
from nodekeeper.runtimes import DockerRuntime
from nodekeeper.runtimes.docker.lock import get_backup_lock

router = APIRouter(tags=["backups"])


# =============================================================================
# Schemas
# =============================================================================


class BackupResponse(BaseModel):
    """Backup creation result."""

    backup_id: str


class BackupListResponse(BaseModel):
    backups: list[BackupInfo]


@router.post("/instances/{instance_id}/backups", response_model=BackupResponse)
async def create_backup(
    instance_id: str,
    runtime: DockerRuntime = Depends(get_runtime),
) -> BackupResponse:
    """Back up an instance (volumes + instance data) into one tar archive.

    Blocks until the backup is done; one backup runs per host at a time.
    """
    async with get_backup_lock():
        backup_id = await runtime.backups.backup_instance(instance_id)
    return BackupResponse(backup_id=backup_id)


@router.get("/backups", response_model=BackupListResponse)
async def list_backups(
    runtime: DockerRuntime = Depends(get_runtime),
) -> BackupListResponse:
    """List finished backups, oldest first."""
    return BackupListResponse(backups=runtime.backups.list_backups())
