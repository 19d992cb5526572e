"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for nodekeeper.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.CONTAINER_STARTED, ...})
    """

    # Application lifecycle
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # Container events
    CONTAINER_CREATED = "container_created"
    CONTAINER_NETWORK_ATTACHED = "container_network_attached"
    CONTAINER_STARTED = "container_started"
    CONTAINER_EXITED = "container_exited"
    CONTAINER_REMOVED = "container_removed"
    CONTAINER_REMOVE_FAILED = "container_remove_failed"

    # Snapshot job events
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"

    # Image events
    IMAGE_BUILD_STARTED = "image_build_started"
    IMAGE_BUILT = "image_built"

    # Backup events
    BACKUP_STARTED = "backup_started"
    BACKUP_VOLUMES = "backup_volumes"
    BACKUP_DATA = "backup_data"
    BACKUP_COMPLETED = "backup_completed"
    BACKUP_FAILED = "backup_failed"

    # Archive events
    ARCHIVE_INITIALIZED = "archive_initialized"
    ARCHIVE_APPENDED = "archive_appended"

    # Cleanup events
    CLEANUP_STARTED = "cleanup_started"
    CLEANUP_COMPLETED = "cleanup_completed"
    CLEANUP_FAILED = "cleanup_failed"

    # Error events
    UNHANDLED_EXCEPTION = "unhandled_exception"
    NODEKEEPER_ERROR = "nodekeeper_error"
