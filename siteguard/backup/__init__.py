"""
Backup module for SiteGuard.

This module handles the full-site backup job:
- Database export (external dump tool with a pure SQLAlchemy fallback)
- Filesystem archiving
- Artifact storage
- Job state (running flag and last result)
- Orchestration and the status/control service
"""

from .errors import BackupError, AlreadyRunning
from .database import DatabaseExporter
from .compression import FilesystemArchiver
from .storage import ArtifactStore
from .state import BackupResult, MemoryJobStateStore, DatabaseJobStateStore
from .orchestrator import BackupOrchestrator
from .service import BackupService, execute_full_backup

__all__ = [
    'BackupError',
    'AlreadyRunning',
    'DatabaseExporter',
    'FilesystemArchiver',
    'ArtifactStore',
    'BackupResult',
    'MemoryJobStateStore',
    'DatabaseJobStateStore',
    'BackupOrchestrator',
    'BackupService',
    'execute_full_backup'
]
