from datetime import datetime
from flask_login import UserMixin
from siteguard import db


class User(UserMixin, db.Model):
    """User model for authentication"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<User {self.username}>'


class BackupRunState(db.Model):
    """Running flag of the backup job (one row while a job holds the lock)"""
    __tablename__ = 'backup_run_state'

    lock_key = db.Column(db.String(64), primary_key=True)  # unique key is the compare-and-set
    started_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)  # TTL, naive UTC

    def __repr__(self):
        return f'<BackupRunState {self.lock_key} expires_at={self.expires_at}>'


class BackupResultRecord(db.Model):
    """Result of the last backup job (single slot, overwritten each run)"""
    __tablename__ = 'backup_last_result'

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False)  # success, failed
    finished_at = db.Column(db.DateTime, nullable=False)
    file_path = db.Column(db.String(500))
    file_size_bytes = db.Column(db.BigInteger)
    error_code = db.Column(db.String(50))
    error_message = db.Column(db.Text)

    def __repr__(self):
        return f'<BackupResultRecord status={self.status} finished_at={self.finished_at}>'
