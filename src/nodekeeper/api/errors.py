"""Error handling module for nodekeeper.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "ARCHIVE_NOT_APPENDABLE",
        "message": "..."
    }
}
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes for nodekeeper."""

    # Archive
    ARCHIVE_NOT_APPENDABLE = "ARCHIVE_NOT_APPENDABLE"
    ARCHIVE_INIT_FAILED = "ARCHIVE_INIT_FAILED"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    SOURCE_IS_DIRECTORY = "SOURCE_IS_DIRECTORY"
    SOURCE_PERMISSION_DENIED = "SOURCE_PERMISSION_DENIED"

    # Containers
    CONTAINER_CREATE_FAILED = "CONTAINER_CREATE_FAILED"
    NETWORK_ATTACH_FAILED = "NETWORK_ATTACH_FAILED"
    CONTAINER_START_FAILED = "CONTAINER_START_FAILED"
    CONTAINER_WAIT_FAILED = "CONTAINER_WAIT_FAILED"
    CONTAINER_EXITED_NON_ZERO = "CONTAINER_EXITED_NON_ZERO"
    CONTAINER_REMOVE_FAILED = "CONTAINER_REMOVE_FAILED"
    IMAGE_BUILD_FAILED = "IMAGE_BUILD_FAILED"

    # Backups and instances
    BACKUP_FAILED = "BACKUP_FAILED"
    BACKUP_ALREADY_EXISTS = "BACKUP_ALREADY_EXISTS"
    INVALID_BACKUP_NAME = "INVALID_BACKUP_NAME"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    INVALID_INSTANCE = "INVALID_INSTANCE"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class NodeKeeperError(Exception):
    """Base exception for nodekeeper.

    All nodekeeper-specific exceptions inherit from this class so the
    HTTP layer can translate them in one place.

    Attributes:
        code: The error code from ErrorCode enum.
        message: Human-readable error message.
        status_code: HTTP status code to return.
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


# =============================================================================
# Archive errors
# =============================================================================


class ArchiveNotAppendableError(NodeKeeperError):
    """Archive is too small or does not end in a clean terminator."""

    def __init__(self, message: str = "Archive is not appendable") -> None:
        super().__init__(ErrorCode.ARCHIVE_NOT_APPENDABLE, message, 500)


class ArchiveInitError(NodeKeeperError):
    def __init__(self, message: str = "Failed initializing empty archive") -> None:
        super().__init__(ErrorCode.ARCHIVE_INIT_FAILED, message, 500)


class SourceNotFoundError(NodeKeeperError):
    def __init__(self, message: str = "Source path not found") -> None:
        super().__init__(ErrorCode.SOURCE_NOT_FOUND, message, 404)


class SourceIsDirectoryError(NodeKeeperError):
    """A single-file add was given a directory."""

    def __init__(self, message: str = "Source path is a directory") -> None:
        super().__init__(ErrorCode.SOURCE_IS_DIRECTORY, message, 400)


class SourcePermissionError(NodeKeeperError):
    def __init__(self, message: str = "Permission denied reading source") -> None:
        super().__init__(ErrorCode.SOURCE_PERMISSION_DENIED, message, 500)


# =============================================================================
# Container errors
# =============================================================================


class ContainerCreateError(NodeKeeperError):
    def __init__(self, message: str = "Failed to create container") -> None:
        super().__init__(ErrorCode.CONTAINER_CREATE_FAILED, message, 500)


class NetworkAttachError(NodeKeeperError):
    def __init__(self, message: str = "Failed to connect container to network") -> None:
        super().__init__(ErrorCode.NETWORK_ATTACH_FAILED, message, 500)


class ContainerStartError(NodeKeeperError):
    def __init__(self, message: str = "Failed to start container") -> None:
        super().__init__(ErrorCode.CONTAINER_START_FAILED, message, 500)


class ContainerWaitError(NodeKeeperError):
    def __init__(self, message: str = "Failed waiting for container") -> None:
        super().__init__(ErrorCode.CONTAINER_WAIT_FAILED, message, 500)


class ContainerExitedNonZeroError(NodeKeeperError):
    """Container finished with a nonzero exit code.

    Carries the exit code, container id and the full combined logs so a
    failed job can be diagnosed without re-running it.
    """

    def __init__(self, exit_code: int, container_id: str, logs: str) -> None:
        self.exit_code = exit_code
        self.container_id = container_id
        self.logs = logs
        super().__init__(
            ErrorCode.CONTAINER_EXITED_NON_ZERO,
            f"unexpected exit code {exit_code} for container {container_id}. "
            f"container logs: {logs}",
            500,
        )


class ContainerRemoveError(NodeKeeperError):
    """Container could not be removed.

    When removal fails while cleaning up after another error, that error is
    kept in ``primary`` and listed first in the message.
    """

    def __init__(
        self,
        container_id: str,
        cause: BaseException,
        primary: BaseException | None = None,
    ) -> None:
        self.container_id = container_id
        self.cause = cause
        self.primary = primary
        message = f"failed to remove container {container_id}: {cause}"
        if primary is not None:
            message = f"{primary}; additionally {message}"
        super().__init__(ErrorCode.CONTAINER_REMOVE_FAILED, message, 500)


class ImageBuildError(NodeKeeperError):
    """Provisioning the snapshotter image failed."""

    def __init__(self, message: str = "Failed to build image") -> None:
        super().__init__(ErrorCode.IMAGE_BUILD_FAILED, message, 500)


# =============================================================================
# Backup and instance errors
# =============================================================================


class BackupError(NodeKeeperError):
    """500 Internal Server Error - Creating the backup failed."""

    def __init__(self, message: str = "Error creating backup") -> None:
        super().__init__(ErrorCode.BACKUP_FAILED, message, 500)


class BackupAlreadyExistsError(NodeKeeperError):
    def __init__(self, message: str = "Backup already exists") -> None:
        super().__init__(ErrorCode.BACKUP_ALREADY_EXISTS, message, 409)


class InvalidBackupNameError(NodeKeeperError):
    def __init__(self, message: str = "Invalid backup name") -> None:
        super().__init__(ErrorCode.INVALID_BACKUP_NAME, message, 400)


class InstanceNotFoundError(NodeKeeperError):
    """404 Not Found - Instance not found."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class InvalidInstanceError(NodeKeeperError):
    def __init__(self, message: str = "Invalid instance") -> None:
        super().__init__(ErrorCode.INVALID_INSTANCE, message, 500)
