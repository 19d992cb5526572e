"""Prometheus metrics for nodekeeper."""

from nodekeeper.metrics.collector import (
    BACKUP_DURATION,
    BACKUPS_TOTAL,
    DOCKER_DURATION,
    DOCKER_ERRORS,
    SNAPSHOT_JOBS_TOTAL,
)

__all__ = [
    "BACKUP_DURATION",
    "BACKUPS_TOTAL",
    "DOCKER_DURATION",
    "DOCKER_ERRORS",
    "SNAPSHOT_JOBS_TOTAL",
]
