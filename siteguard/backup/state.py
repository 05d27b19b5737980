"""
Job state for the full-site backup.

A JobStateStore owns two pieces of shared state:

- the running flag, set with a TTL so a crashed job cannot wedge the system
  into "always running", and
- the last BackupResult (single slot, no history).

``try_start`` is an exclusive compare-and-set: when two callers race exactly
one of them wins.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError

from siteguard import db
from siteguard.models import BackupResultRecord, BackupRunState


logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'

DEFAULT_LOCK_KEY = 'full_backup'
DEFAULT_TTL_SECONDS = 3600


def utcnow() -> datetime:
    """Naive UTC now, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class BackupJobState:
    running: bool
    started_at: datetime
    expires_at: datetime


@dataclass
class BackupResult:
    """Outcome of one backup job."""

    status: str
    timestamp: datetime
    file_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, file_path: str, file_size_bytes: int, timestamp: datetime = None) -> 'BackupResult':
        return cls(
            status=STATUS_SUCCESS,
            timestamp=timestamp or utcnow(),
            file_path=file_path,
            file_size_bytes=file_size_bytes,
        )

    @classmethod
    def failure(cls, error_message: str, error_code: str = None, timestamp: datetime = None) -> 'BackupResult':
        return cls(
            status=STATUS_FAILED,
            timestamp=timestamp or utcnow(),
            error_message=error_message,
            error_code=error_code,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


class JobStateStore(ABC):
    """Running flag plus last-result slot."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @abstractmethod
    def try_start(self) -> bool:
        """Set the running flag iff it is not already set; return whether we won."""

    @abstractmethod
    def clear(self):
        """Clear the running flag."""

    @abstractmethod
    def current_job(self) -> Optional[BackupJobState]:
        """Return the live job state, or None when idle or expired."""

    @abstractmethod
    def record_result(self, result: BackupResult):
        """Overwrite the last result."""

    @abstractmethod
    def last_result(self) -> Optional[BackupResult]:
        pass

    def cancel(self):
        """Unconditionally clear the running flag."""
        self.clear()
        logger.info("Backup running flag cleared by cancellation")

    def is_running(self) -> bool:
        return self.current_job() is not None


class MemoryJobStateStore(JobStateStore):
    """
    In-process store guarded by a mutex.

    Only suitable when the scheduler and the HTTP workers share one process.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], datetime] = utcnow):
        super().__init__(ttl_seconds, clock)
        self._lock = threading.Lock()
        self._job = None
        self._result = None

    def try_start(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._job is not None and self._job.expires_at > now:
                return False
            self._job = BackupJobState(running=True, started_at=now, expires_at=now + self.ttl)
            return True

    def clear(self):
        with self._lock:
            self._job = None

    def current_job(self) -> Optional[BackupJobState]:
        with self._lock:
            if self._job is None or self._job.expires_at <= self._clock():
                return None
            return self._job

    def record_result(self, result: BackupResult):
        with self._lock:
            self._result = result

    def last_result(self) -> Optional[BackupResult]:
        with self._lock:
            return self._result


class DatabaseJobStateStore(JobStateStore):
    """
    Store backed by the application database.

    The running flag is a row in ``backup_run_state`` keyed by ``lock_key``;
    the primary key constraint makes the insert in ``try_start`` the
    compare-and-set, so it is safe across worker processes. Must be used
    inside an application context.
    """

    RESULT_SLOT = 1

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], datetime] = utcnow,
                 lock_key: str = DEFAULT_LOCK_KEY):
        super().__init__(ttl_seconds, clock)
        self.lock_key = lock_key

    def try_start(self) -> bool:
        now = self._clock()

        # Expired flags belong to crashed jobs
        db.session.execute(
            delete(BackupRunState).where(
                BackupRunState.lock_key == self.lock_key,
                BackupRunState.expires_at <= now,
            )
        )
        try:
            db.session.execute(
                insert(BackupRunState).values(
                    lock_key=self.lock_key,
                    started_at=now,
                    expires_at=now + self.ttl,
                )
            )
            db.session.commit()
            return True
        except IntegrityError:
            db.session.rollback()
            return False

    def clear(self):
        db.session.execute(
            delete(BackupRunState).where(BackupRunState.lock_key == self.lock_key)
        )
        db.session.commit()

    def current_job(self) -> Optional[BackupJobState]:
        row = db.session.scalar(
            select(BackupRunState).where(BackupRunState.lock_key == self.lock_key)
        )
        if row is None or row.expires_at <= self._clock():
            return None
        return BackupJobState(running=True, started_at=row.started_at, expires_at=row.expires_at)

    def record_result(self, result: BackupResult):
        db.session.merge(BackupResultRecord(
            id=self.RESULT_SLOT,
            status=result.status,
            finished_at=result.timestamp,
            file_path=result.file_path,
            file_size_bytes=result.file_size_bytes,
            error_code=result.error_code,
            error_message=result.error_message,
        ))
        db.session.commit()

    def last_result(self) -> Optional[BackupResult]:
        record = db.session.get(BackupResultRecord, self.RESULT_SLOT)
        if record is None:
            return None
        return BackupResult(
            status=record.status,
            timestamp=record.finished_at,
            file_path=record.file_path,
            file_size_bytes=record.file_size_bytes,
            error_message=record.error_message,
            error_code=record.error_code,
        )
