"""API dependencies for dependency injection."""

from nodekeeper.runtimes import DockerRuntime

# Singleton runtime instance
_runtime: DockerRuntime | None = None


def init_runtime() -> None:
    """Initialize runtime singleton. Must be called during app startup."""
    global _runtime
    _runtime = DockerRuntime()


def close_runtime() -> None:
    global _runtime
    _runtime = None


def get_runtime() -> DockerRuntime:
    """Get runtime singleton.

    Raises:
        RuntimeError: If called before init_runtime().
    """
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call init_runtime() first.")
    return _runtime


def reset_runtime() -> None:
    """Reset runtime singleton (for testing)."""
    global _runtime
    _runtime = None
