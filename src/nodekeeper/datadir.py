"""Local data directory: installed instances and their backups.

Layout::

    <root>/nodes/<instance_id>/state.json
    <root>/nodes/<instance_id>/docker-compose.yml
    <root>/backups/<instance_id>-<unix_ts>.tar
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from nodekeeper.api.errors import (
    BackupAlreadyExistsError,
    InstanceNotFoundError,
    InvalidBackupNameError,
    InvalidInstanceError,
)
from nodekeeper.archive import BackupArchive

logger = logging.getLogger(__name__)

NODES_DIR = "nodes"
BACKUPS_DIR = "backups"
BACKUP_SUFFIX = ".tar"
PARTIAL_SUFFIX = ".partial"

_BACKUP_NAME_RE = re.compile(r"^(?P<instance_id>.+)-(?P<timestamp>[0-9]+)\.tar$")


class ServiceVolumeSpec(BaseModel):
    """Volumes declared by one compose service."""

    service_name: str
    container_name: str
    volume_targets: list[str] = []

    model_config = {"frozen": True}


class BackupId(BaseModel):
    """Identity of one backup. Its string form is the public backup id."""

    instance_id: str
    timestamp: datetime

    model_config = {"frozen": True}

    @classmethod
    def new(cls, instance_id: str, now: datetime | None = None) -> BackupId:
        now = now or datetime.now(timezone.utc)
        return cls(instance_id=instance_id, timestamp=now.replace(microsecond=0))

    @classmethod
    def parse(cls, filename: str) -> BackupId:
        """Parse ``<instance_id>-<unix_ts>.tar``."""
        match = _BACKUP_NAME_RE.match(filename)
        if match is None:
            raise InvalidBackupNameError(f"invalid backup name: {filename}")
        return cls(
            instance_id=match["instance_id"],
            timestamp=datetime.fromtimestamp(int(match["timestamp"]), tz=timezone.utc),
        )

    @property
    def unix(self) -> int:
        return int(self.timestamp.timestamp())

    def __str__(self) -> str:
        return f"{self.instance_id}-{self.unix}"


class BackupInfo(BaseModel):
    """A finished backup found in the data directory."""

    backup_id: str
    instance_id: str
    timestamp: datetime
    size_bytes: int


class InstanceState(BaseModel):
    name: str
    url: str
    version: str = ""
    profile: str = ""
    tag: str = ""


class Instance:
    """An installed instance directory."""

    def __init__(self, instance_id: str, path: Path) -> None:
        self.id = instance_id
        self._path = path
        self.state = self._load_state()

    def _load_state(self) -> InstanceState:
        state_file = self._path / "state.json"
        try:
            raw = json.loads(state_file.read_text())
            return InstanceState.model_validate(raw)
        except FileNotFoundError as e:
            raise InvalidInstanceError(f"invalid instance {self.id}: state.json not found") from e
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidInstanceError(f"invalid instance {self.id}: {e}") from e

    def data_path(self) -> Path:
        return self._path

    def compose_path(self) -> Path:
        return self._path / "docker-compose.yml"

    def compose_project(self) -> list[ServiceVolumeSpec]:
        """Services of the instance's compose project, in declared order."""
        try:
            with open(self.compose_path()) as f:
                compose = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise InvalidInstanceError(
                f"invalid instance {self.id}: docker-compose.yml not found"
            ) from e
        except yaml.YAMLError as e:
            raise InvalidInstanceError(f"invalid instance {self.id}: {e}") from e

        project = compose.get("name") or self.id
        services = []
        for name, service in (compose.get("services") or {}).items():
            service = service or {}
            services.append(
                ServiceVolumeSpec(
                    service_name=name,
                    container_name=service.get("container_name") or f"{project}-{name}-1",
                    volume_targets=[_volume_target(v) for v in service.get("volumes") or []],
                )
            )
        return services


def _volume_target(volume: str | dict) -> str:
    """In-container path of a compose volume in short or long syntax."""
    if isinstance(volume, dict):
        return volume["target"]
    parts = volume.split(":")
    # "target", "source:target" or "source:target:mode"
    return parts[1] if len(parts) > 1 else parts[0]


class DataDir:
    """Root of nodekeeper's local state."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path).absolute()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backups_path(self) -> Path:
        return self._path / BACKUPS_DIR

    def instance_path(self, instance_id: str) -> Path:
        return self._path / NODES_DIR / instance_id

    def has_instance(self, instance_id: str) -> bool:
        return self.instance_path(instance_id).is_dir()

    def instance(self, instance_id: str) -> Instance:
        if not self.has_instance(instance_id):
            raise InstanceNotFoundError(f"instance not found: {instance_id}")
        return Instance(instance_id, self.instance_path(instance_id))

    def backup_path(self, backup_id: BackupId | str) -> Path:
        return self.backups_path / f"{backup_id}{BACKUP_SUFFIX}"

    def init_backup(self, backup_id: BackupId) -> BackupArchive:
        """Create the empty archive for a new backup."""
        self.backups_path.mkdir(parents=True, exist_ok=True)
        path = self.backup_path(backup_id)
        if path.exists():
            raise BackupAlreadyExistsError(f"backup already exists: {backup_id}")
        archive = BackupArchive(path)
        archive.init()
        return archive

    def mark_partial(self, backup_id: BackupId) -> Path:
        """Rename a failed backup's archive out of the way, keeping it for inspection."""
        path = self.backup_path(backup_id)
        partial = path.with_name(path.name + PARTIAL_SUFFIX)
        path.rename(partial)
        return partial

    def list_backups(self) -> list[BackupInfo]:
        """Finished backups, oldest first."""
        if not self.backups_path.is_dir():
            return []
        backups = []
        for entry in self.backups_path.iterdir():
            if not entry.is_file() or not entry.name.endswith(BACKUP_SUFFIX):
                continue
            try:
                backup_id = BackupId.parse(entry.name)
            except InvalidBackupNameError:
                logger.warning("Ignoring unrecognized file in backups dir: %s", entry.name)
                continue
            backups.append(
                BackupInfo(
                    backup_id=str(backup_id),
                    instance_id=backup_id.instance_id,
                    timestamp=backup_id.timestamp,
                    size_bytes=entry.stat().st_size,
                )
            )
        backups.sort(key=lambda b: (b.timestamp, b.instance_id))
        return backups
