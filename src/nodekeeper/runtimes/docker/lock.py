"""Host-wide backup lock."""

import asyncio

_backup_lock: asyncio.Lock | None = None


def get_backup_lock() -> asyncio.Lock:
    """Get or create the backup lock.

    Only one backup runs per host at a time: backups share the snapshotter
    image check/build and the local Docker daemon.
    """
    global _backup_lock
    if _backup_lock is None:
        _backup_lock = asyncio.Lock()
    return _backup_lock
