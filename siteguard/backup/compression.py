"""
Filesystem archiver for full-site backups.

Walks the site root in pre-order (every directory before its contents),
skips entries matched by a path-prefix exclusion rule and writes everything
else plus one extra file (the SQL export) into a single ZIP archive.
"""

import logging
import os
import zipfile
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from .errors import ArchiveEmpty, ArchiveOpenFailed, ArchiverUnavailable, BackupError


logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = 'full-backup-'
ARCHIVE_EXTENSION = '.zip'
SQL_EXTENSION = '.sql'
MIN_ARCHIVE_SIZE_BYTES = 1024


def generate_backup_basename(timestamp: datetime) -> str:
    """
    Generate the file name shared by one job's export and archive.

    Format: full-backup-{YYYYMMDD-HHMMSS}

    Args:
        timestamp: UTC timestamp of the job

    Returns:
        Base name without extension
    """
    return f"{ARCHIVE_PREFIX}{timestamp.strftime('%Y%m%d-%H%M%S')}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        BackupError: If the file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise BackupError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise BackupError(f"Failed to get archive size: {e}")


def is_excluded(relative_path: str, exclusions: Iterable[str]) -> bool:
    """
    Plain prefix match, not a glob.

    ``cache`` excludes ``cache/x.txt`` and also ``cached-stuff/x.txt``.
    """
    for prefix in exclusions:
        if prefix and relative_path.startswith(prefix):
            return True
    return False


def walk_preorder(root_dir: str, prune: Callable[[str], bool] = None) -> Iterator[Tuple[str, str, bool]]:
    """
    Yield ``(full_path, relative_path, is_dir)`` for every entry below root.

    Directories are yielded before their contents and siblings are sorted by
    name. Entries for which ``prune(relative_path)`` is true are neither
    yielded nor descended into. Symlinked directories are not followed.
    """
    def _walk(directory: str, relative: str):
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        for entry in entries:
            rel = f"{relative}/{entry.name}" if relative else entry.name
            if prune is not None and prune(rel):
                continue
            is_dir = entry.is_dir(follow_symlinks=False)
            yield entry.path, rel, is_dir
            if is_dir:
                yield from _walk(entry.path, rel)

    yield from _walk(root_dir, '')


class FilesystemArchiver:
    """
    Creates the ZIP archive of a directory tree plus one extra file.

    The archive is written to ``<archive_path>.part`` and only renamed to
    ``archive_path`` once it is closed and larger than ``min_size`` bytes.
    """

    def __init__(self, min_size: int = MIN_ARCHIVE_SIZE_BYTES,
                 compression: int = zipfile.ZIP_DEFLATED):
        self.min_size = min_size
        self.compression = compression

    def is_available(self) -> bool:
        # zipfile only supports deflate when zlib is compiled in
        if self.compression == zipfile.ZIP_DEFLATED:
            return getattr(zipfile, 'zlib', None) is not None
        return True

    def archive(
        self,
        archive_path: str,
        extra_file: Optional[str],
        root_dir: str,
        exclusions: Optional[List[str]] = None,
    ):
        """
        Archive ``root_dir`` and ``extra_file`` into ``archive_path``.

        Args:
            archive_path: Final path of the ZIP file (overwritten if present)
            extra_file: File added at the archive's top level under its base name
            root_dir: Directory tree to archive
            exclusions: Path prefixes (relative to root_dir) to leave out

        Raises:
            ArchiverUnavailable: If zip compression is not supported
            ArchiveOpenFailed: If the archive cannot be created
            ArchiveEmpty: If the finished archive is missing or too small
        """
        if not self.is_available():
            raise ArchiverUnavailable(
                "Zip compression (zlib) is not available. File backup cannot proceed."
            )

        exclusions = list(exclusions or [])
        archive_name = os.path.basename(archive_path)
        if archive_name not in exclusions:
            exclusions.append(archive_name)

        partial_path = f"{archive_path}.part"
        root_dir = os.path.abspath(root_dir)

        try:
            zipf = zipfile.ZipFile(partial_path, 'w', self.compression)
        except OSError as e:
            raise ArchiveOpenFailed(f"Cannot create ZIP file {archive_path}: {e}")

        try:
            with zipf:
                if extra_file and os.path.isfile(extra_file):
                    zipf.write(extra_file, os.path.basename(extra_file))

                added = self._add_tree(zipf, root_dir, exclusions)

            size = os.path.getsize(partial_path)
            if size <= self.min_size:
                raise ArchiveEmpty(
                    f"ZIP archive creation failed or resulted in an empty file ({size} bytes)."
                )

            os.replace(partial_path, archive_path)
            logger.info(f"Archive created: {archive_path} ({added} entries, {size} bytes)")

        except BackupError:
            _discard(partial_path)
            raise
        except (OSError, zipfile.BadZipFile) as e:
            _discard(partial_path)
            raise ArchiveEmpty(f"ZIP archive creation failed: {e}")

    def _add_tree(self, zipf: zipfile.ZipFile, root_dir: str, exclusions: List[str]) -> int:
        added = 0

        for full_path, relative_path, is_dir in walk_preorder(
            root_dir, prune=lambda rel: is_excluded(rel, exclusions)
        ):
            # Directories become empty "name/" entries; sockets, fifos and
            # dangling links are skipped
            if is_dir or os.path.isfile(full_path):
                zipf.write(full_path, relative_path)
                added += 1

        return added


def _discard(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {path}: {e}")
