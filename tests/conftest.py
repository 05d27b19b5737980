"""
Shared pytest fixtures for SiteGuard tests.

This module provides fixtures for:
- Flask app and test client
- Application state database with in-memory SQLite
- User and authentication fixtures
- Site root, backup directory and site database fixtures
- Mock fixtures for the scheduler
"""

import os
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, text

from siteguard import create_app, db as _db
from siteguard.models import User
from siteguard.auth import hash_password


@pytest.fixture(scope='function')
def site_root(tmp_path):
    """
    Create a small site tree.

    Creates:
    - index.php
    - wp-content/uploads/photo.bin (random, so archives exceed the size floor)
    - wp-content/cache/page.html (excluded by default)
    """
    root = tmp_path / 'site'
    (root / 'wp-content' / 'uploads').mkdir(parents=True)
    (root / 'wp-content' / 'cache').mkdir()

    (root / 'index.php').write_text('<?php echo "hello";')
    (root / 'wp-content' / 'uploads' / 'photo.bin').write_bytes(os.urandom(4096))
    (root / 'wp-content' / 'cache' / 'page.html').write_text('<html>cached</html>')

    return root


@pytest.fixture(scope='function')
def backup_dir(site_root):
    return site_root / 'wp-content' / 'backups'


@pytest.fixture(scope='function')
def site_db_url(tmp_path):
    """
    SQLite site database with two prefixed tables and one foreign table.
    """
    url = f"sqlite:///{tmp_path / 'site.db'}"
    engine = create_engine(url)

    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE wp_options (id INTEGER PRIMARY KEY, name TEXT, value TEXT)"))
        conn.execute(text("CREATE TABLE wp_posts (id INTEGER PRIMARY KEY, title TEXT)"))
        conn.execute(text("CREATE TABLE other_table (id INTEGER PRIMARY KEY)"))
        conn.execute(
            text("INSERT INTO wp_options (id, name, value) VALUES (:id, :name, :value)"),
            [
                {'id': 1, 'name': 'siteurl', 'value': 'https://example.com'},
                {'id': 2, 'name': 'blogname', 'value': "Bob's blog"},
                {'id': 3, 'name': 'empty', 'value': None},
            ]
        )

    engine.dispose()
    return url


@pytest.fixture(scope='function')
def app(site_root, backup_dir, site_db_url):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite for the application state database and the
    temporary site fixtures for everything being backed up.
    """
    app = create_app('testing', {
        'SITE_ROOT': str(site_root),
        'SITE_DATABASE_URL': site_db_url,
        'BACKUP_DIR': str(backup_dir),
        'JOB_STATE_BACKEND': 'database',
    })

    with app.app_context():
        yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    _db.create_all()
    yield _db
    _db.session.remove()
    _db.drop_all()


@pytest.fixture(scope='function')
def client(app, db):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def admin_user(db):
    """
    Create an admin user for testing authentication.

    Username: admin
    Password: Admin123
    """
    user = User(
        username='admin',
        password_hash=hash_password('Admin123')
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def auth_client(client, admin_user):
    """Test client logged in as the admin user."""
    response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'Admin123'})
    assert response.status_code == 200
    return client


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    from siteguard import scheduler as scheduler_module

    scheduler_instance = MagicMock()
    scheduler_instance.running = False
    scheduler_instance.state = 0
    scheduler_instance.get_jobs.return_value = []

    with patch.object(scheduler_module, 'scheduler', scheduler_instance):
        yield scheduler_instance
