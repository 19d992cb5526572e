"""Prometheus metrics definitions for nodekeeper.

Tracks infrastructure-level work:
- Docker operations (container lifecycle, image builds)
- Snapshot jobs and whole backups
"""

from prometheus_client import Counter, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================
# Docker operations are typically slow (100ms ~ 180s)
_BUCKETS_SLOW = (
    0.1, 0.2, 0.4, 0.8, 1.5,
    3, 6, 12, 24, 48,
    96, 180,
)

# Backups copy whole volumes and can take a long time
_BUCKETS_BACKUP = (
    1, 2, 5, 10, 20,
    40, 80, 160, 300, 600,
    1200, 2400,
)

# =============================================================================
# Docker Operation Metrics
# =============================================================================

DOCKER_DURATION = Histogram(
    "nodekeeper_docker_duration_seconds",
    "Duration of Docker operations",
    ["operation"],  # create, network_connect, start, wait, logs, remove, build
    buckets=_BUCKETS_SLOW,
)

DOCKER_ERRORS = Counter(
    "nodekeeper_docker_errors_total",
    "Total Docker operation errors",
    ["operation"],
)

# =============================================================================
# Backup Metrics
# =============================================================================

SNAPSHOT_JOBS_TOTAL = Counter(
    "nodekeeper_snapshot_jobs_total",
    "Total snapshot jobs by outcome",
    ["status"],  # success, failed
)

BACKUP_DURATION = Histogram(
    "nodekeeper_backup_duration_seconds",
    "Duration of whole instance backups",
    buckets=_BUCKETS_BACKUP,
)

BACKUPS_TOTAL = Counter(
    "nodekeeper_backups_total",
    "Total backups by outcome",
    ["status"],  # success, failed
)


# =============================================================================
# Metric Initialization
# =============================================================================

def _init_metrics() -> None:
    """Initialize labeled metrics with zero values."""
    for op in ["create", "network_connect", "start", "wait", "logs", "remove", "build"]:
        DOCKER_DURATION.labels(operation=op)
        DOCKER_ERRORS.labels(operation=op)

    for status in ["success", "failed"]:
        SNAPSHOT_JOBS_TOTAL.labels(status=status)
        BACKUPS_TOTAL.labels(status=status)


_init_metrics()
