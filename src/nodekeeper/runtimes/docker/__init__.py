"""Docker runtime for nodekeeper."""

from nodekeeper.config import NodeKeeperConfig, get_config
from nodekeeper.datadir import DataDir
from nodekeeper.runtimes.docker.backup import BackupManager
from nodekeeper.runtimes.docker.runner import ContainerRunner
from nodekeeper.runtimes.docker.snapshotter import Snapshotter


class DockerRuntime:
    """Docker runtime combining the container runner and backup management."""

    def __init__(self, config: NodeKeeperConfig | None = None) -> None:
        self._config = config or get_config()
        self.data_dir = DataDir(self._config.data.path)

        self.runner = ContainerRunner(timeout=self._config.docker.run_timeout)
        self.backups = BackupManager(
            self.data_dir,
            self._config.snapshotter,
            runner=self.runner,
            network=self._config.docker.network,
            temp_dir=self._config.data.temp_dir,
        )


__all__ = [
    "DockerRuntime",
    "BackupManager",
    "ContainerRunner",
    "Snapshotter",
]
