"""
Backup orchestrator - composes one full-site backup job.

Workflow:
1. Generate one UTC timestamp for the whole job
2. Ensure the backup directory exists
3. Export the database to full-backup-<timestamp>.sql
4. Archive the site root plus the SQL file to full-backup-<timestamp>.zip
5. Delete the SQL file (whatever the archive step returned)
6. Report a single BackupResult

The orchestrator does not touch the running flag or persist the result;
that belongs to the caller (see siteguard.backup.service).
"""

import logging
import os
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .compression import (
    ARCHIVE_EXTENSION,
    SQL_EXTENSION,
    FilesystemArchiver,
    generate_backup_basename,
    get_archive_size,
)
from .database import DatabaseExporter
from .errors import BackupError
from .state import BackupResult
from .storage import ArtifactStore


logger = logging.getLogger(__name__)


def _utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class BackupOrchestrator:
    """
    Runs the export and archive steps of one backup job in sequence.
    """

    def __init__(
        self,
        exporter: DatabaseExporter,
        archiver: FilesystemArchiver,
        artifacts: ArtifactStore,
        site_root: str,
        exclusions: Optional[List[str]] = None,
        clock: Callable[[], datetime] = _utc_clock,
    ):
        """
        Initialize the orchestrator.

        Args:
            exporter: Database exporter
            archiver: Filesystem archiver
            artifacts: Artifact store owning the backup directory
            site_root: Application root directory to archive
            exclusions: Default path-prefix exclusions relative to site_root
            clock: Returns the current UTC time
        """
        self.exporter = exporter
        self.archiver = archiver
        self.artifacts = artifacts
        self.site_root = site_root
        self.exclusions = list(exclusions or [])
        self._clock = clock

    def build_exclusions(self, archive_path: str) -> List[str]:
        """
        Default exclusions plus the backup directory (when it lives under
        the site root) and the archive's own file name.
        """
        exclusions = list(self.exclusions)

        backup_dir = os.path.abspath(str(self.artifacts.base_path))
        root = os.path.abspath(self.site_root)
        if os.path.commonpath([backup_dir, root]) == root and backup_dir != root:
            exclusions.append(os.path.relpath(backup_dir, root).replace(os.sep, '/'))

        exclusions.append(os.path.basename(archive_path))
        return exclusions

    def run_once(self) -> BackupResult:
        """
        Execute one backup job.

        Returns:
            BackupResult describing success (archive path and size) or the
            first failure
        """
        timestamp = self._clock()
        basename = generate_backup_basename(timestamp)
        backup_dir = str(self.artifacts.base_path)
        sql_path = os.path.join(backup_dir, basename + SQL_EXTENSION)
        archive_path = os.path.join(backup_dir, basename + ARCHIVE_EXTENSION)
        finished_at = timestamp.replace(tzinfo=None)

        logger.info(f"Starting full backup {basename}")

        try:
            self.artifacts.ensure_directory()

            logger.info("Exporting database")
            self.exporter.export(sql_path)
        except BackupError as e:
            logger.error(f"Backup {basename} failed: {e.message}")
            return BackupResult.failure(e.message, e.code, finished_at)

        try:
            logger.info(f"Archiving {self.site_root}")
            self.archiver.archive(archive_path, sql_path, self.site_root,
                                  self.build_exclusions(archive_path))
            file_size = get_archive_size(archive_path)
        except BackupError as e:
            logger.error(f"Backup {basename} failed: {e.message}")
            return BackupResult.failure(e.message, e.code, finished_at)
        finally:
            self._cleanup(sql_path)

        logger.info(f"Backup {basename} completed ({file_size / 1024 / 1024:.2f} MB)")
        return BackupResult.success(archive_path, file_size, finished_at)

    def _cleanup(self, sql_path: str):
        """Remove the intermediate SQL export; failures are only logged."""
        if os.path.exists(sql_path):
            try:
                os.remove(sql_path)
            except OSError as e:
                logger.warning(f"Failed to remove intermediate export {sql_path}: {e}")
