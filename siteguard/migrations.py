"""
Database schema setup for SiteGuard.
"""

import logging
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from siteguard import db

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ('users', 'backup_run_state', 'backup_last_result')


def init_database_schema(app):
    """
    Create any missing tables of the application state database.

    Safe to call from several Gunicorn workers at once: a worker that loses
    the race to create a table only logs the error.
    """
    with app.app_context():
        existing_tables = set(inspect(db.engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing_tables]

        if not missing:
            return

        logger.info(f"Creating missing tables: {', '.join(missing)}")
        try:
            db.create_all()
            logger.info("Database schema created successfully")
        except SQLAlchemyError as e:
            # Another worker may have beaten us to it
            logger.error(f"Failed to create database schema: {e}")
