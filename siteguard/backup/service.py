"""
Backup service - status/control API and the scheduled job body.

BackupService is what the HTTP routes talk to: start, cancel, status and the
artifact operations. ``execute_full_backup`` is what the scheduler runs for
each job; it owns persisting the result and clearing the running flag.
"""

import logging
import os
from typing import Any, Callable, Dict, Optional

from markupsafe import escape
from sqlalchemy import create_engine

from .compression import FilesystemArchiver
from .database import DatabaseExporter
from .errors import AlreadyRunning
from .orchestrator import BackupOrchestrator
from .state import (
    BackupResult,
    DatabaseJobStateStore,
    JobStateStore,
    MemoryJobStateStore,
)
from .storage import ArtifactStore


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'full_backup'


def create_state_store(config) -> JobStateStore:
    """
    Create the job state store selected by JOB_STATE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = config.get('JOB_STATE_BACKEND', 'database')
    ttl = config.get('BACKUP_LOCK_TTL_SECONDS', 3600)

    if backend == 'database':
        return DatabaseJobStateStore(ttl_seconds=ttl)
    elif backend == 'memory':
        return MemoryJobStateStore(ttl_seconds=ttl)
    else:
        raise ValueError(f"Invalid job state backend: {backend}")


def build_orchestrator(config) -> BackupOrchestrator:
    """Wire exporter, archiver and artifact store from application config."""
    engine = create_engine(config['SITE_DATABASE_URL'], pool_pre_ping=True)

    exporter = DatabaseExporter(
        engine,
        table_prefix=config.get('SITE_TABLE_PREFIX', ''),
        dump_tool=config.get('DUMP_TOOL'),
        batch_size=config.get('EXPORT_BATCH_SIZE', 100),
        timeout=config.get('DUMP_TIMEOUT_SECONDS', 600),
    )
    archiver = FilesystemArchiver(min_size=config.get('ARCHIVE_MIN_SIZE_BYTES', 1024))

    return BackupOrchestrator(
        exporter,
        archiver,
        ArtifactStore(config['BACKUP_DIR']),
        site_root=config['SITE_ROOT'],
        exclusions=config.get('ARCHIVE_EXCLUDE_PATHS', []),
    )


def execute_full_backup(orchestrator_factory: Callable[[], BackupOrchestrator],
                        state_store: JobStateStore) -> BackupResult:
    """
    Build and run one job, persist its result and clear the running flag.

    Unexpected exceptions (including a broken configuration) are recorded as
    a failed result rather than lost.
    """
    try:
        result = orchestrator_factory().run_once()
    except Exception as e:
        logger.exception("Backup job crashed")
        result = BackupResult.failure(f"Unexpected error: {e}")

    try:
        state_store.record_result(result)
    finally:
        state_store.clear()

    logger.info(f"Backup job finished with status: {result.status}")
    return result


def summarize_result(result: Optional[BackupResult]) -> Optional[Dict[str, Any]]:
    """Display form of the last result (messages are HTML-escaped)."""
    if result is None:
        return None

    summary = {
        'status': result.status,
        'finished_at': result.timestamp.isoformat() + 'Z' if result.timestamp else None,
    }

    if result.succeeded:
        summary.update({
            'filename': os.path.basename(result.file_path) if result.file_path else None,
            'file_size_bytes': result.file_size_bytes,
            'file_size_mb': round(result.file_size_bytes / 1024 / 1024, 2) if result.file_size_bytes else None,
        })
    else:
        summary.update({
            'error_code': result.error_code,
            'error_message': str(escape(result.error_message or '')),
        })

    return summary


class BackupService:
    """
    Status/control API over the job state, the scheduler and the artifacts.
    """

    def __init__(self, state_store: JobStateStore, artifacts: ArtifactStore, trigger):
        """
        Initialize the service.

        Args:
            state_store: Running flag and last-result store
            artifacts: Artifact store for the backup directory
            trigger: Scheduler collaborator exposing
                schedule_as_soon_as_possible(job_id) and clear_schedule(job_id)
        """
        self.state_store = state_store
        self.artifacts = artifacts
        self.trigger = trigger

    def start_backup(self):
        """
        Claim the running flag and schedule the job.

        Raises:
            AlreadyRunning: If a job holds the running flag
        """
        if not self.state_store.try_start():
            raise AlreadyRunning("A backup is already in progress.")

        try:
            self.trigger.schedule_as_soon_as_possible(BACKUP_JOB_ID)
        except Exception:
            # Nothing will run, so do not leave the flag set until the TTL
            self.state_store.clear()
            raise

        logger.info("Backup scheduled")

    def cancel_backup(self):
        """
        Drop any pending trigger and clear the running flag.

        A job that is already executing is not interrupted.
        """
        try:
            self.trigger.clear_schedule(BACKUP_JOB_ID)
        finally:
            self.state_store.cancel()

    def get_status(self) -> Dict[str, Any]:
        job = self.state_store.current_job()

        return {
            'backup_status': 'running' if job else 'idle',
            'started_at': job.started_at.isoformat() + 'Z' if job else None,
            'last_result': summarize_result(self.state_store.last_result()),
            'artifacts': [serialize_artifact(a) for a in self.artifacts.list_artifacts()],
        }

    def list_artifacts(self):
        return self.artifacts.list_artifacts()

    def delete_artifact(self, filename: str):
        self.artifacts.delete(filename)


def serialize_artifact(artifact: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'filename': artifact['filename'],
        'size_bytes': artifact['size_bytes'],
        'size_mb': round(artifact['size_bytes'] / 1024 / 1024, 2),
        'modified': artifact['modified'].astimezone().isoformat(),
    }
