"""Creating, pruning and restoring gameserver backups inside containers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .engine import DockerError
from .fileops import FileOperations
from .listing import BACKUPS_ROOT, SERVER_ROOT, backup_filename

logger = logging.getLogger(__name__)

_TEMP_DIR = "/tmp/backups"
_LIST_BACKUPS = (
    f"find {BACKUPS_ROOT} -name '*.tar.gz' -type f -printf '%T@ %p\\n' | sort -nr | cut -d' ' -f2-"
)


class BackupOperations(FileOperations):
    """Backup handling on top of the container file operations."""

    def __init__(self, client: Any, *, clock: Callable[[], datetime] | None = None):
        super().__init__(client)
        self._clock = clock or datetime.now

    def create_backup(self, container_id: str, gameserver_name: str) -> str:
        """Archive the server directory into a timestamped backup and return its file name."""
        filename = backup_filename(self._clock())
        logger.info("Creating backup %s for %s in container %s", filename, gameserver_name, container_id)
        self._exec_simple(container_id, ["mkdir", "-p", BACKUPS_ROOT], "create_backup_dir")
        self._exec_simple(
            container_id,
            ["tar", "-czf", f"{BACKUPS_ROOT}/{filename}", "-C", SERVER_ROOT, "."],
            "create_backup",
        )
        logger.info("Backup %s created in container %s", filename, container_id)
        return filename

    def cleanup_old_backups(self, container_id: str, max_backups: int) -> list[str]:
        """Delete all but the newest ``max_backups`` backups and return the paths removed.

        A limit of zero or less keeps every backup.
        """
        if max_backups <= 0:
            return []

        try:
            output = self.exec_command(container_id, ["sh", "-c", _LIST_BACKUPS])
        except DockerError as exc:
            raise DockerError(
                "list_backups", f"failed to list backups for cleanup in container {container_id}", exc
            ) from exc

        backup_files = output.strip().split("\n")
        if len(backup_files) <= max_backups:
            logger.info("No backup cleanup needed in container %s (%d backups, max %d)",
                        container_id, len(backup_files), max_backups)
            return []

        removed: list[str] = []
        for path in backup_files[max_backups:]:
            if not path.strip():
                continue
            logger.info("Deleting old backup %s in container %s", path, container_id)
            try:
                self.exec_command(container_id, ["rm", "-f", path])
            except DockerError as exc:
                logger.error("Failed to delete old backup %s in container %s: %s", path, container_id, exc)
                continue
            removed.append(path)

        logger.info("Backup cleanup completed in container %s", container_id)
        return removed

    def restore_backup(self, container_id: str, backup_filename: str) -> None:
        """Replace the server directory with the contents of a backup."""
        logger.info("Restoring backup %s in container %s", backup_filename, container_id)
        self._exec_simple(container_id, ["mkdir", "-p", _TEMP_DIR], "create_temp_dir")
        self._exec_simple(
            container_id, ["sh", "-c", f"find {SERVER_ROOT} -mindepth 1 -delete"], "clear_server_dir"
        )
        self._exec_simple(
            container_id,
            ["tar", "-xzf", f"{BACKUPS_ROOT}/{backup_filename}", "-C", SERVER_ROOT],
            "extract_backup",
        )
        try:
            self.exec_command(container_id, ["rm", "-rf", _TEMP_DIR])
        except DockerError as exc:
            logger.warning("Failed to clean up temporary backup directory: %s", exc)
        logger.info("Backup %s restored in container %s", backup_filename, container_id)