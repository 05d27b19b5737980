import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect


# Initialize extensions
db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()


def configure_logging(app):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))
    handlers.append(console_handler)

    # File handler (skipped when LOG_DIR is unset, e.g. under test)
    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'siteguard.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers)

    # Configure Flask app logger
    app.logger.setLevel(log_level)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, config_overrides=None):
    """
    Flask application factory

    Args:
        config_name: Key of siteguard.config.config (defaults to FLASK_ENV)
        config_overrides: Mapping applied on top of the configuration object
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from siteguard.config import config
    app.config.from_object(config[config_name])
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Ensure the local state database directory exists
    db_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if db_uri.startswith('sqlite:///') and ':memory:' not in db_uri:
        os.makedirs(os.path.dirname(db_uri.replace('sqlite:///', '')) or '.', exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from siteguard.models import User
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Register blueprints FIRST (before CSRF exemption)
    from siteguard.routes import auth_routes, backup_routes, artifact_routes
    app.register_blueprint(auth_routes.bp)
    app.register_blueprint(backup_routes.bp)
    app.register_blueprint(artifact_routes.bp)

    # THEN exempt API routes from CSRF protection (using blueprint instances)
    csrf.exempt(auth_routes.bp)
    csrf.exempt(backup_routes.bp)
    csrf.exempt(artifact_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        from siteguard.scheduler import is_scheduler_running
        return {'status': 'healthy', 'scheduler_running': is_scheduler_running()}, 200

    # Initialize database schema
    from siteguard import models
    from siteguard.migrations import init_database_schema
    init_database_schema(app)

    # Backup service shared by routes and the scheduler thread
    from siteguard.backup.service import BackupService, create_state_store
    from siteguard.backup.storage import ArtifactStore
    from siteguard.scheduler import APSchedulerTrigger

    app.extensions['siteguard'] = BackupService(
        state_store=create_state_store(app.config),
        artifacts=ArtifactStore(app.config['BACKUP_DIR']),
        trigger=APSchedulerTrigger(),
    )

    # Initialize and start scheduler (only in designated worker or development child process)
    from siteguard.scheduler import init_scheduler, start_scheduler, stop_scheduler
    import atexit

    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)

    # Scheduler initialization logic:
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Otherwise: Only where SCHEDULER_ENABLED is set
    if is_development:
        should_init_scheduler = is_reloader_child
    else:
        should_init_scheduler = app.config.get('SCHEDULER_ENABLED', False)

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
