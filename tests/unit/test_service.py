"""
Unit tests for the backup service (siteguard/backup/service.py).

Tests start/cancel/status control, the scheduled job body and result
summaries.
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from siteguard.backup.errors import AlreadyRunning
from siteguard.backup.service import (
    BACKUP_JOB_ID,
    BackupService,
    build_orchestrator,
    create_state_store,
    execute_full_backup,
    summarize_result,
)
from siteguard.backup.state import BackupResult, DatabaseJobStateStore, MemoryJobStateStore
from siteguard.backup.storage import ArtifactStore


@pytest.fixture
def state_store():
    return MemoryJobStateStore()


@pytest.fixture
def trigger():
    return MagicMock()


@pytest.fixture
def service(state_store, trigger, backup_dir):
    return BackupService(state_store, ArtifactStore(str(backup_dir)), trigger)


class TestStartAndCancel:
    """Test start_backup and cancel_backup."""

    def test_start_schedules_job(self, service, trigger, state_store):
        service.start_backup()

        trigger.schedule_as_soon_as_possible.assert_called_once_with(BACKUP_JOB_ID)
        assert state_store.is_running()

    def test_second_start_rejected(self, service, trigger):
        service.start_backup()

        with pytest.raises(AlreadyRunning) as exc_info:
            service.start_backup()

        assert exc_info.value.code == 'already_running'
        trigger.schedule_as_soon_as_possible.assert_called_once()

    def test_schedule_failure_clears_flag(self, service, trigger, state_store):
        trigger.schedule_as_soon_as_possible.side_effect = RuntimeError("Scheduler not initialized")

        with pytest.raises(RuntimeError):
            service.start_backup()

        assert state_store.is_running() is False

    def test_cancel(self, service, trigger, state_store):
        service.start_backup()

        service.cancel_backup()

        trigger.clear_schedule.assert_called_once_with(BACKUP_JOB_ID)
        assert state_store.is_running() is False

    def test_cancel_when_idle(self, service, state_store):
        service.cancel_backup()

        assert state_store.is_running() is False


class TestExecuteFullBackup:
    """Test the scheduled job body."""

    def test_records_result_and_clears_flag(self, state_store):
        state_store.try_start()
        expected = BackupResult.success('/b/full-backup-1.zip', 2048)
        orchestrator = MagicMock()
        orchestrator.run_once.return_value = expected

        result = execute_full_backup(lambda: orchestrator, state_store)

        assert result is expected
        assert state_store.last_result() is expected
        assert state_store.is_running() is False

    def test_unexpected_exception_recorded(self, state_store):
        state_store.try_start()
        orchestrator = MagicMock()
        orchestrator.run_once.side_effect = ValueError('bad config')

        result = execute_full_backup(lambda: orchestrator, state_store)

        assert result.status == 'failed'
        assert 'bad config' in result.error_message
        assert state_store.is_running() is False

    def test_factory_failure_recorded(self, state_store):
        state_store.try_start()

        def broken_factory():
            raise KeyError('SITE_DATABASE_URL')

        result = execute_full_backup(broken_factory, state_store)

        assert result.status == 'failed'
        assert state_store.is_running() is False

    def test_end_to_end(self, app, db, state_store, backup_dir):
        """Test start -> job -> idle with a success result and a listed artifact."""
        trigger = MagicMock()
        service = BackupService(state_store, ArtifactStore(str(backup_dir)), trigger)

        service.start_backup()
        assert service.get_status()['backup_status'] == 'running'

        execute_full_backup(lambda: build_orchestrator(app.config), state_store)

        status = service.get_status()
        assert status['backup_status'] == 'idle'
        assert status['last_result']['status'] == 'success'
        assert len(status['artifacts']) == 1

        artifact = status['artifacts'][0]
        assert artifact['filename'] == status['last_result']['filename']
        assert artifact['size_bytes'] == status['last_result']['file_size_bytes']


class TestStatus:
    """Test get_status and result summaries."""

    def test_idle_status(self, service):
        status = service.get_status()

        assert status == {
            'backup_status': 'idle',
            'started_at': None,
            'last_result': None,
            'artifacts': [],
        }

    def test_running_status(self, service):
        service.start_backup()

        status = service.get_status()

        assert status['backup_status'] == 'running'
        assert status['started_at'].endswith('Z')

    def test_success_summary(self):
        summary = summarize_result(BackupResult.success(
            '/b/full-backup-20240115-123045.zip', 3 * 1024 * 1024, datetime(2024, 1, 15, 12, 30, 45)
        ))

        assert summary == {
            'status': 'success',
            'finished_at': '2024-01-15T12:30:45Z',
            'filename': 'full-backup-20240115-123045.zip',
            'file_size_bytes': 3 * 1024 * 1024,
            'file_size_mb': 3.0,
        }

    def test_failure_message_escaped(self):
        summary = summarize_result(BackupResult.failure('<script>x</script>', 'write_error'))

        assert summary['error_message'] == '&lt;script&gt;x&lt;/script&gt;'
        assert summary['error_code'] == 'write_error'

    def test_no_result(self):
        assert summarize_result(None) is None


class TestFactories:
    """Test wiring helpers."""

    def test_memory_store(self):
        assert isinstance(create_state_store({'JOB_STATE_BACKEND': 'memory'}), MemoryJobStateStore)

    def test_database_store(self):
        store = create_state_store({'JOB_STATE_BACKEND': 'database', 'BACKUP_LOCK_TTL_SECONDS': 60})

        assert isinstance(store, DatabaseJobStateStore)
        assert store.ttl.total_seconds() == 60

    def test_unknown_store(self):
        with pytest.raises(ValueError):
            create_state_store({'JOB_STATE_BACKEND': 'redis'})
