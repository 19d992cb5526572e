"""Tests for error handling classes."""

import pytest

from nodekeeper.api.errors import (
    ArchiveNotAppendableError,
    BackupAlreadyExistsError,
    ContainerExitedNonZeroError,
    ContainerRemoveError,
    ErrorCode,
    InstanceNotFoundError,
    NodeKeeperError,
    SourceIsDirectoryError,
)


class TestNodeKeeperError:
    """Tests for the error hierarchy."""

    @pytest.mark.parametrize(
        "exc, code, status_code",
        [
            (ArchiveNotAppendableError(), ErrorCode.ARCHIVE_NOT_APPENDABLE, 500),
            (SourceIsDirectoryError(), ErrorCode.SOURCE_IS_DIRECTORY, 400),
            (BackupAlreadyExistsError(), ErrorCode.BACKUP_ALREADY_EXISTS, 409),
            (InstanceNotFoundError(), ErrorCode.INSTANCE_NOT_FOUND, 404),
        ],
    )
    def test_code_and_status(self, exc: NodeKeeperError, code: ErrorCode, status_code: int) -> None:
        assert isinstance(exc, NodeKeeperError)
        assert exc.code == code
        assert exc.status_code == status_code

    def test_to_response(self) -> None:
        """to_response() should return ErrorResponse with correct fields."""
        resp = InstanceNotFoundError("instance not found: nope").to_response()

        assert resp.error.code == "INSTANCE_NOT_FOUND"
        assert resp.error.message == "instance not found: nope"


class TestContainerExitedNonZeroError:
    def test_message_carries_code_and_logs(self) -> None:
        exc = ContainerExitedNonZeroError(1, "c0ffee", "boom")

        assert str(exc) == "unexpected exit code 1 for container c0ffee. container logs: boom"
        assert exc.exit_code == 1


class TestContainerRemoveError:
    def test_without_primary(self) -> None:
        exc = ContainerRemoveError("c0ffee", Exception("busy"))

        assert str(exc) == "failed to remove container c0ffee: busy"

    def test_primary_listed_first(self) -> None:
        primary = ContainerExitedNonZeroError(2, "c0ffee", "boom")

        exc = ContainerRemoveError("c0ffee", Exception("busy"), primary=primary)

        assert str(exc).startswith("unexpected exit code 2")
        assert str(exc).endswith("additionally failed to remove container c0ffee: busy")
