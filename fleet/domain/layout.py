"""
On-disk layout shared by the controller and the backup manager.

    <project>/data/<instance>/
    <project>/logs/<instance>/
    <project>/configs/            (mounted read-only into every instance)
    <project>/backups/
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("fleet")


@dataclass(frozen=True)
class FleetLayout:
    root: Path

    @property
    def data_root(self) -> Path:
        return self.root / "data"

    @property
    def logs_root(self) -> Path:
        return self.root / "logs"

    @property
    def configs_dir(self) -> Path:
        return self.root / "configs"

    @property
    def backups_dir(self) -> Path:
        return self.root / "backups"

    def data_dir(self, name: str) -> Path:
        return self.data_root / name

    def log_dir(self, name: str) -> Path:
        return self.logs_root / name

    def ensure_instance_dirs(self, name: str) -> tuple[Path, Path]:
        """Create the instance's data and log directories (reused if present)."""
        data_dir = self.data_dir(name)
        log_dir = self.log_dir(name)
        data_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)
        self.configs_dir.mkdir(parents=True, exist_ok=True)
        return data_dir, log_dir

    def purge_instance_dirs(self, name: str) -> None:
        for path in (self.data_dir(name), self.log_dir(name)):
            if path.exists():
                shutil.rmtree(path)
                logger.info(f"Removed directory {path}")
