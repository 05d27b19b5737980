"""
Backup error taxonomy.

Every expected failure of a backup job or of an artifact operation is raised
as a BackupError subclass carrying a stable ``code``. The orchestrator turns
these into a failed BackupResult; request-level errors (AlreadyRunning,
InvalidArtifactPath, PermissionDenied) are returned directly to the caller.
"""


class BackupError(Exception):
    """Base class for all backup failures."""

    code = 'backup_failed'

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class DirCreationFailed(BackupError):
    """Could not create the backup directory."""
    code = 'dir_creation_failed'


class ExportToolUnavailable(BackupError):
    """The external dump tool cannot be used."""
    code = 'export_tool_unavailable'


class NoTablesFound(BackupError):
    """No application tables found to back up."""
    code = 'no_tables_found'


class WriteError(BackupError):
    """Could not write the SQL export file."""
    code = 'write_error'


class ExportFailed(BackupError):
    """Database export failed."""
    code = 'export_failed'


class ArchiverUnavailable(BackupError):
    """Zip compression support is not available."""
    code = 'archiver_unavailable'


class ArchiveOpenFailed(BackupError):
    """Cannot create ZIP file."""
    code = 'archive_open_failed'


class ArchiveEmpty(BackupError):
    """ZIP archive creation failed or resulted in an empty file."""
    code = 'archive_empty'


class AlreadyRunning(BackupError):
    """A backup is already in progress."""
    code = 'already_running'


class PermissionDenied(BackupError):
    """Permission denied."""
    code = 'permission_denied'


class InvalidArtifactPath(BackupError):
    """Invalid backup file path."""
    code = 'invalid_artifact_path'


class ArtifactNotFound(BackupError):
    """Backup file not found."""
    code = 'artifact_not_found'
