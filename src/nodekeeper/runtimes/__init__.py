"""nodekeeper runtimes."""

from nodekeeper.runtimes.docker import DockerRuntime

__all__ = ["DockerRuntime"]
