"""
Artifact storage for completed backups.

The backup directory listing is the source of truth: every ``*.zip`` file in
it is an artifact, and no separate index is kept.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Any

from .compression import ARCHIVE_EXTENSION
from .errors import ArtifactNotFound, DirCreationFailed, InvalidArtifactPath, PermissionDenied


logger = logging.getLogger(__name__)


def scan_archives(directory: Path) -> Iterable[Path]:
    """Default lister: archive files directly inside ``directory``."""
    return (path for path in directory.glob(f'*{ARCHIVE_EXTENSION}') if path.is_file())


class ArtifactStore:
    """
    Lists, resolves and deletes backup archives in the backup directory.
    """

    def __init__(self, base_path: str, lister: Callable[[Path], Iterable[Path]] = scan_archives):
        """
        Initialize artifact storage.

        Args:
            base_path: Backup directory
            lister: Callable returning the archive paths inside a directory
        """
        self.base_path = Path(base_path)
        self._lister = lister

    def ensure_directory(self):
        """
        Create the backup directory (and parents) if missing.

        Raises:
            DirCreationFailed: If the directory cannot be created
        """
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirCreationFailed(f"Could not create backup directory {self.base_path}: {e}")

    def list_artifacts(self) -> List[Dict[str, Any]]:
        """
        List all backup archives, newest first by modification time.

        Returns:
            List of dicts with 'filename', 'size_bytes' and 'modified' keys
        """
        if not self.base_path.is_dir():
            return []

        artifacts = []
        for path in self._lister(self.base_path):
            try:
                stat = path.stat()
            except FileNotFoundError:
                # Deleted between listing and stat
                continue

            artifacts.append({
                'filename': path.name,
                'size_bytes': stat.st_size,
                'modified': datetime.fromtimestamp(stat.st_mtime),
            })

        artifacts.sort(key=lambda a: a['modified'], reverse=True)
        return artifacts

    def resolve(self, filename: str) -> Path:
        """
        Resolve an artifact name to its path inside the backup directory.

        Raises:
            InvalidArtifactPath: If the name is not a plain archive file name
                or resolves outside the backup directory
            ArtifactNotFound: If no such archive exists
        """
        if not filename or filename != os.path.basename(filename) or filename in ('.', '..'):
            raise InvalidArtifactPath(f"Invalid backup file name: {filename!r}")

        if not filename.endswith(ARCHIVE_EXTENSION):
            raise InvalidArtifactPath(f"Not a backup archive: {filename!r}")

        base = self.base_path.resolve()
        full_path = (base / filename).resolve()

        if full_path.parent != base:
            raise InvalidArtifactPath(f"Backup file resolves outside the backup directory: {filename!r}")

        if not full_path.is_file():
            raise ArtifactNotFound(f"Backup file not found: {filename}")

        return full_path

    def delete(self, filename: str):
        """
        Delete one artifact.

        Raises:
            InvalidArtifactPath: If the name fails validation (nothing is touched)
            ArtifactNotFound: If no such archive exists
            PermissionDenied: If the file cannot be removed
        """
        full_path = self.resolve(filename)

        try:
            full_path.unlink()
        except PermissionError as e:
            raise PermissionDenied(f"Permission denied deleting {filename}: {e}")
        except FileNotFoundError:
            raise ArtifactNotFound(f"Backup file not found: {filename}")

        logger.info(f"Deleted backup file: {full_path}")
