"""Snapshotter image and job configuration.

The snapshotter is a small image that tars a set of mounted volumes into a
shared archive file under a path prefix. It reads its job from a YAML file
mounted at ``CONFIG_TARGET`` and appends to the archive mounted at
``ARCHIVE_TARGET``.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import yaml
from pydantic import BaseModel

from nodekeeper.api.errors import ImageBuildError
from nodekeeper.config import SnapshotterSettings
from nodekeeper.infra import ImageAPI
from nodekeeper.logging_schema import LogEvent
from nodekeeper.metrics import DOCKER_DURATION, DOCKER_ERRORS

logger = logging.getLogger(__name__)

CONFIG_TARGET = "/snapshotter.yml"
ARCHIVE_TARGET = "/backup.tar"


class SnapshotJobConfig(BaseModel):
    """Job description handed to one snapshotter container."""

    prefix: str
    out: str = ARCHIVE_TARGET
    volumes: list[str] = []

    def dump(self) -> str:
        return yaml.safe_dump(
            {"prefix": self.prefix, "out": self.out, "volumes": list(self.volumes)},
            sort_keys=False,
        )

    @contextmanager
    def temp_file(self, directory: str | os.PathLike[str] | None = None) -> Iterator[Path]:
        """Write the config to a temporary file that exists for the duration of the block."""
        with tempfile.NamedTemporaryFile(
            "w",
            dir=directory,
            prefix="nodekeeper-snapshotter-config-",
            suffix=".yml",
            delete=False,
        ) as f:
            f.write(self.dump())
        path = Path(f.name)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)


def volume_prefix(service_name: str) -> str:
    return f"volumes/{service_name}"


class Snapshotter:
    """Makes sure the pinned snapshotter image is available locally."""

    def __init__(self, settings: SnapshotterSettings, images: ImageAPI | None = None) -> None:
        self._settings = settings
        self._images = images or ImageAPI()

    @property
    def image(self) -> str:
        return self._settings.image

    async def ensure_image(self) -> None:
        """Build the snapshotter image from its pinned remote context if it is missing.

        Not safe against concurrent callers on the same host; backups are
        serialized by the caller.
        """
        try:
            if await self._images.exists(self.image):
                return
        except Exception as e:
            raise ImageBuildError(f"checking snapshotter image {self.image}: {e}") from e

        remote = self._settings.remote_context
        logger.info(
            'Building snapshotter image "%s" from "%s"',
            self.image,
            remote,
            extra={"event": LogEvent.IMAGE_BUILD_STARTED},
        )
        logger.info(
            "To learn more about the snapshotter, visit https://%s/tree/%s",
            self._settings.repo,
            self._settings.version,
        )
        start = time.monotonic()
        try:
            await self._images.build_from_remote(remote, self.image)
        except Exception as e:
            DOCKER_ERRORS.labels(operation="build").inc()
            raise ImageBuildError(f"building snapshotter image {self.image}: {e}") from e
        finally:
            DOCKER_DURATION.labels(operation="build").observe(time.monotonic() - start)
        logger.info(
            "Built snapshotter image",
            extra={"event": LogEvent.IMAGE_BUILT, "image": self.image},
        )
