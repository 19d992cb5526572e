"""Instance backups.

A backup is one tar archive holding:

- ``volumes/<service>/...`` for every compose service that declares volumes,
  written by one snapshotter container per service
- ``data/...`` for the instance directory, written locally
- ``timestamp`` with the backup's unix time
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path

from nodekeeper.api.errors import BackupError, NodeKeeperError
from nodekeeper.archive import BackupArchive
from nodekeeper.config import SnapshotterSettings
from nodekeeper.datadir import BackupId, BackupInfo, DataDir, Instance, ServiceVolumeSpec
from nodekeeper.logging_schema import LogEvent
from nodekeeper.metrics import BACKUP_DURATION, BACKUPS_TOTAL, SNAPSHOT_JOBS_TOTAL
from nodekeeper.runtimes.docker.runner import ContainerRunner, Mount, MountType, RunOptions
from nodekeeper.runtimes.docker.snapshotter import (
    ARCHIVE_TARGET,
    CONFIG_TARGET,
    SnapshotJobConfig,
    Snapshotter,
    volume_prefix,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data"
TIMESTAMP_NAME = "timestamp"

LABEL_JOB = "nodekeeper.job"
LABEL_BACKUP_ID = "nodekeeper.backup_id"


class BackupManager:
    """Creates backups of installed instances.

    Snapshot jobs for one backup run strictly one after another: they all
    append to the same archive file and each one must start from the end
    marker the previous writer left behind.
    """

    def __init__(
        self,
        data_dir: DataDir,
        snapshotter: SnapshotterSettings,
        runner: ContainerRunner | None = None,
        snapshotter_images: Snapshotter | None = None,
        network: str | None = None,
        temp_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        self._data_dir = data_dir
        self._runner = runner or ContainerRunner()
        self._snapshotter = snapshotter_images or Snapshotter(snapshotter)
        self._network = network
        self._temp_dir = temp_dir

    async def backup_instance(self, instance_id: str) -> str:
        """Back up one instance and return the backup id.

        On failure the archive written so far is kept as
        ``<backup_id>.tar.partial``. It is never listed as a backup and
        should be treated as evidence, not as something to resume.
        """
        instance = self._data_dir.instance(instance_id)
        logger.info(
            "Backing up instance %s",
            instance_id,
            extra={"event": LogEvent.BACKUP_STARTED, "instance_id": instance_id},
        )
        await self._snapshotter.ensure_image()
        services = instance.compose_project()

        backup_id = BackupId.new(instance_id)
        archive = self._data_dir.init_backup(backup_id)

        start = time.monotonic()
        try:
            for service in services:
                await self._backup_service_volumes(service, backup_id, archive)
            await self._backup_instance_data(instance, archive)
            await self._add_timestamp(backup_id, archive)
        except (Exception, asyncio.CancelledError) as e:
            BACKUPS_TOTAL.labels(status="failed").inc()
            try:
                partial = self._data_dir.mark_partial(backup_id)
            except OSError as rename_error:
                logger.error("Could not mark backup %s as partial: %s", backup_id, rename_error)
                partial = self._data_dir.backup_path(backup_id)
            logger.error(
                "Backup failed, partial archive kept at %s",
                partial,
                extra={
                    "event": LogEvent.BACKUP_FAILED,
                    "instance_id": instance_id,
                    "backup_id": str(backup_id),
                    "error": str(e),
                },
            )
            raise
        finally:
            BACKUP_DURATION.observe(time.monotonic() - start)
        BACKUPS_TOTAL.labels(status="success").inc()

        logger.info(
            "Backup completed",
            extra={
                "event": LogEvent.BACKUP_COMPLETED,
                "instance_id": instance_id,
                "backup_id": str(backup_id),
                "size_bytes": archive.size(),
            },
        )
        return str(backup_id)

    def list_backups(self) -> list[BackupInfo]:
        return self._data_dir.list_backups()

    async def _backup_service_volumes(
        self,
        service: ServiceVolumeSpec,
        backup_id: BackupId,
        archive: BackupArchive,
    ) -> None:
        if not service.volume_targets:
            return
        logger.info(
            'Backing up %d volumes from service "%s"...',
            len(service.volume_targets),
            service.service_name,
            extra={"event": LogEvent.BACKUP_VOLUMES, "service": service.service_name},
        )

        # The snapshotter writes from the current end marker
        archive.check_appendable()

        job = SnapshotJobConfig(
            prefix=volume_prefix(service.service_name),
            volumes=service.volume_targets,
        )
        with job.temp_file(self._temp_dir or tempfile.gettempdir()) as config_path:
            options = RunOptions(
                network=self._network,
                args=["backup"],
                mounts=[
                    Mount(
                        type=MountType.BIND,
                        source=str(config_path),
                        target=CONFIG_TARGET,
                        read_only=True,
                    ),
                    Mount(type=MountType.BIND, source=archive.path, target=ARCHIVE_TARGET),
                ],
                volumes_from=[service.container_name],
                labels={LABEL_JOB: "backup", LABEL_BACKUP_ID: str(backup_id)},
            )
            try:
                result = await self._runner.run(self._snapshotter.image, options)
            except NodeKeeperError as e:
                SNAPSHOT_JOBS_TOTAL.labels(status="failed").inc()
                logger.error(
                    "Snapshot job failed",
                    extra={
                        "event": LogEvent.JOB_FAILED,
                        "service": service.service_name,
                        "error_code": e.code.value,
                    },
                )
                raise BackupError(
                    f'snapshotter failed for service "{service.service_name}" with error: {e}'
                ) from e

        SNAPSHOT_JOBS_TOTAL.labels(status="success").inc()
        logger.info(
            "Snapshot job completed",
            extra={"event": LogEvent.JOB_COMPLETED, "service": service.service_name},
        )
        if result.logs:
            logger.info(result.logs.rstrip())

    async def _backup_instance_data(self, instance: Instance, archive: BackupArchive) -> None:
        logger.info(
            "Backing up instance data...",
            extra={"event": LogEvent.BACKUP_DATA, "instance_id": instance.id},
        )
        await asyncio.to_thread(archive.add_directory, instance.data_path(), DATA_PREFIX)

    async def _add_timestamp(self, backup_id: BackupId, archive: BackupArchive) -> None:
        logger.info("Adding timestamp %s...", backup_id.timestamp.isoformat())
        fd, name = tempfile.mkstemp(prefix="backup-timestamp-", dir=self._temp_dir)
        path = Path(name)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(str(backup_id.unix))
            await asyncio.to_thread(archive.add_file, path, TIMESTAMP_NAME)
        finally:
            path.unlink(missing_ok=True)
