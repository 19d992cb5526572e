"""Run a short-lived container to completion.

Lifecycle of one ``ContainerRunner.run`` call::

    Created -> NetworkAttached (optional) -> Started -> Waiting -> Exited
            -> LogsCollected -> Removed

A failure at any step after creation still removes the container before
the error reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager

from pydantic import BaseModel

from nodekeeper.api.errors import (
    ContainerCreateError,
    ContainerExitedNonZeroError,
    ContainerRemoveError,
    ContainerStartError,
    ContainerWaitError,
    NetworkAttachError,
)
from nodekeeper.infra import ContainerAPI, ContainerConfig, HostConfig, Mount, MountType, NetworkAPI
from nodekeeper.logging_schema import LogEvent
from nodekeeper.metrics import DOCKER_DURATION, DOCKER_ERRORS

logger = logging.getLogger(__name__)

NETWORK_HOST = "host"

# Label put on every container this module creates
LABEL_MANAGED = "nodekeeper.managed"

__all__ = [
    "LABEL_MANAGED",
    "ContainerRunner",
    "Mount",
    "MountType",
    "RunOptions",
    "RunResult",
]


class RunOptions(BaseModel):
    """Options for a single ``ContainerRunner.run`` call.

    ``auto_remove`` is accepted but never forwarded to the daemon: the
    runner always reads the logs first and then removes the container
    itself.
    """

    network: str | None = None
    args: list[str] = []
    mounts: list[Mount] = []
    volumes_from: list[str] = []
    auto_remove: bool = False
    labels: dict[str, str] = {}

    model_config = {"frozen": True}


class RunResult(BaseModel):
    exit_code: int
    logs: str


@contextmanager
def _docker_op(operation: str) -> Iterator[None]:
    """Record duration and errors of one Docker call."""
    start = time.monotonic()
    try:
        yield
    except Exception:
        DOCKER_ERRORS.labels(operation=operation).inc()
        raise
    finally:
        DOCKER_DURATION.labels(operation=operation).observe(time.monotonic() - start)


class ContainerRunner:
    """Runs one container-backed task at a time to completion."""

    def __init__(
        self,
        containers: ContainerAPI | None = None,
        networks: NetworkAPI | None = None,
        timeout: float | None = None,
    ) -> None:
        self._containers = containers or ContainerAPI()
        self._networks = networks or NetworkAPI()
        self._timeout = timeout

    async def run(self, image: str, options: RunOptions) -> RunResult:
        """Run ``image`` until it exits and return its logs.

        Raises:
            ContainerCreateError: The container could not be created.
            NetworkAttachError: Connecting to ``options.network`` failed.
            ContainerStartError: The start request failed.
            ContainerWaitError: Waiting for the exit status failed.
            ContainerExitedNonZeroError: The container exited with a nonzero code.
            ContainerRemoveError: The container could not be removed afterwards.
        """
        async with self._created_container(image, options) as container_id:
            if options.network and options.network != NETWORK_HOST:
                await self._connect_network(container_id, options.network)

            exit_code = await self._start_and_wait(container_id)
            logs = await self._collect_logs(container_id)

            logger.info(
                "Container exited",
                extra={
                    "event": LogEvent.CONTAINER_EXITED,
                    "container": container_id,
                    "image": image,
                    "exit_code": exit_code,
                },
            )
            if exit_code != 0:
                raise ContainerExitedNonZeroError(exit_code, container_id, logs)
            return RunResult(exit_code=exit_code, logs=logs)

    # =========================================================================
    # Lifecycle steps
    # =========================================================================

    @asynccontextmanager
    async def _created_container(self, image: str, options: RunOptions) -> AsyncIterator[str]:
        """Create a container and remove it again on every way out of the block."""
        config = ContainerConfig(
            image=image,
            name=f"nodekeeper-run-{uuid.uuid4().hex[:8]}",
            cmd=options.args,
            labels={**options.labels, LABEL_MANAGED: "true"},
            host_config=HostConfig(
                mounts=options.mounts,
                volumes_from=options.volumes_from,
            ),
        )
        try:
            with _docker_op("create"):
                container_id = await self._containers.create(config)
        except Exception as e:
            raise ContainerCreateError(f"error creating container from image {image}: {e}") from e

        logger.debug(
            "Created container",
            extra={"event": LogEvent.CONTAINER_CREATED, "container": container_id, "image": image},
        )

        try:
            yield container_id
        except asyncio.CancelledError as e:
            logger.warning(
                "Container run cancelled",
                extra={"event": LogEvent.JOB_CANCELLED, "container": container_id},
            )
            remove_error = await self._force_cleanup(container_id)
            if remove_error is not None:
                e.add_note(str(remove_error))
            raise
        except Exception as e:
            await self._remove(container_id, primary=e)
            raise
        else:
            await self._remove(container_id)

    async def _connect_network(self, container_id: str, network: str) -> None:
        try:
            with _docker_op("network_connect"):
                await self._networks.connect(network, container_id)
        except Exception as e:
            raise NetworkAttachError(
                f"error connecting container {container_id} to network {network}: {e}"
            ) from e
        logger.debug(
            "Connected container to network",
            extra={
                "event": LogEvent.CONTAINER_NETWORK_ATTACHED,
                "container": container_id,
                "network": network,
            },
        )

    async def _start(self, container_id: str) -> None:
        try:
            with _docker_op("start"):
                await self._containers.start(container_id)
        except Exception as e:
            raise ContainerStartError(f"error starting container {container_id}: {e}") from e
        logger.debug(
            "Started container",
            extra={"event": LogEvent.CONTAINER_STARTED, "container": container_id},
        )

    async def _wait(self, container_id: str) -> int:
        try:
            with _docker_op("wait"):
                return await self._containers.wait(
                    container_id, condition="next-exit", timeout=self._timeout
                )
        except Exception as e:
            raise ContainerWaitError(f"error waiting for container {container_id}: {e}") from e

    async def _start_and_wait(self, container_id: str) -> int:
        """Start the container while already waiting for its next exit.

        The wait is requested first so an exit that happens before the start
        acknowledgment is still observed. The two requests race: a failed
        wait ends the run at once, a failed start cancels the wait.
        """
        wait_task = asyncio.create_task(self._wait(container_id))
        start_task = asyncio.create_task(self._start(container_id))
        try:
            done, _ = await asyncio.wait(
                {wait_task, start_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if wait_task in done and wait_task.exception() is not None:
                return await wait_task
            await start_task
            return await wait_task
        finally:
            for task in (wait_task, start_task):
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    # mark the loser's error as retrieved
                    task.exception()

    async def _collect_logs(self, container_id: str) -> str:
        """Read the full combined output of an exited container."""
        try:
            with _docker_op("logs"):
                raw = await self._containers.logs(container_id, stdout=True, stderr=True)
        except Exception as e:
            # The exit code still decides the outcome
            logger.error("Error getting logs of container %s: %s", container_id, e)
            return f"<logs unavailable: {e}>"
        return raw.decode("utf-8", errors="replace")

    async def _remove(self, container_id: str, primary: BaseException | None = None) -> None:
        try:
            with _docker_op("remove"):
                await self._containers.remove(container_id)
        except Exception as e:
            logger.error(
                "Failed to remove container",
                extra={
                    "event": LogEvent.CONTAINER_REMOVE_FAILED,
                    "container": container_id,
                    "error": str(e),
                },
            )
            raise ContainerRemoveError(container_id, cause=e, primary=primary) from (primary or e)
        logger.debug(
            "Removed container",
            extra={"event": LogEvent.CONTAINER_REMOVED, "container": container_id},
        )

    async def _force_cleanup(self, container_id: str) -> ContainerRemoveError | None:
        """Tear down a container whose run was abandoned.

        Returns the removal failure, if any, so the caller can attach it to
        the cancellation it re-raises.
        """
        try:
            await self._containers.stop(container_id, timeout=5)
        except Exception as e:
            logger.warning("Stopping container %s failed: %s", container_id, e)
        try:
            await self._containers.remove(container_id, force=True)
        except Exception as e:
            logger.error(
                "Force cleanup failed",
                extra={
                    "event": LogEvent.CONTAINER_REMOVE_FAILED,
                    "container": container_id,
                    "error": str(e),
                },
            )
            return ContainerRemoveError(container_id, cause=e)
        return None
