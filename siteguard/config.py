import os
from datetime import timedelta


def _env_list(name, default):
    value = os.environ.get(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Flask
    # Get SECRET_KEY from environment, or generate a persistent one in development
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # Try to read from persistent file in /data directory
        secret_file = '/data/.secret_key'
        if os.path.exists(secret_file):
            with open(secret_file, 'r') as f:
                SECRET_KEY = f.read().strip()
        else:
            import secrets
            SECRET_KEY = secrets.token_hex(32)

    # Application state database (running flag, last result, users, scheduler jobs)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/siteguard.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Session
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # CSRF
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    # Site being backed up
    SITE_ROOT = os.environ.get('SITE_ROOT') or '/var/www/html'
    SITE_DATABASE_URL = os.environ.get('SITE_DATABASE_URL') or 'mysql+pymysql://root@localhost/wordpress'
    SITE_TABLE_PREFIX = os.environ.get('SITE_TABLE_PREFIX', 'wp_')

    # Backup output
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or os.path.join(SITE_ROOT, 'wp-content', 'backups')
    ARCHIVE_EXCLUDE_PATHS = _env_list('ARCHIVE_EXCLUDE_PATHS', [
        'wp-admin',
        'wp-includes',
        'wp-content/cache',
        'wp-content/upgrade',
        'wp-content/w3tc-cache',
        'wp-content/wp-rocket-cache',
    ])
    ARCHIVE_MIN_SIZE_BYTES = 1024

    # Database export
    DUMP_TOOL = os.environ.get('DUMP_TOOL', 'mysqldump')
    DUMP_TIMEOUT_SECONDS = int(os.environ.get('DUMP_TIMEOUT_SECONDS', 600))
    EXPORT_BATCH_SIZE = 100

    # Job state
    JOB_STATE_BACKEND = os.environ.get('JOB_STATE_BACKEND', 'database')  # database or memory
    BACKUP_LOCK_TTL_SECONDS = int(os.environ.get('BACKUP_LOCK_TTL_SECONDS', 3600))

    # Scheduler (set SCHEDULER_WORKER=true on exactly one process)
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_WORKER', 'false').lower() == 'true'
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "siteguard.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(Config):
    """Testing configuration (in-memory state, no scheduler thread)"""
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False
    SCHEDULER_ENABLED = False
    LOG_DIR = None
    DUMP_TOOL = None


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False

    # Production security
    SESSION_COOKIE_SECURE = os.environ.get('HTTPS_ENABLED', 'false').lower() == 'true'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
