"""
Unit tests for artifact storage (siteguard/backup/storage.py).

Tests listing, name validation, resolution and deletion of backup archives.
"""

import os
import time
from unittest.mock import patch

import pytest

from siteguard.backup.errors import (
    ArtifactNotFound,
    DirCreationFailed,
    InvalidArtifactPath,
    PermissionDenied,
)
from siteguard.backup.storage import ArtifactStore


@pytest.fixture
def store_dir(tmp_path):
    base = tmp_path / 'backups'
    base.mkdir()
    return base


def _touch(path, size, mtime):
    path.write_bytes(b'x' * size)
    os.utime(path, (mtime, mtime))


class TestListArtifacts:
    """Test artifact listing."""

    def test_newest_first(self, store_dir):
        now = time.time()
        _touch(store_dir / 'full-backup-old.zip', 100, now - 3600)
        _touch(store_dir / 'full-backup-new.zip', 200, now)

        artifacts = ArtifactStore(str(store_dir)).list_artifacts()

        assert [a['filename'] for a in artifacts] == ['full-backup-new.zip', 'full-backup-old.zip']
        assert artifacts[0]['size_bytes'] == 200

    def test_only_zip_files_listed(self, store_dir):
        (store_dir / 'full-backup-1.zip').write_bytes(b'zip')
        (store_dir / 'full-backup-1.sql').write_text('-- leftover')
        (store_dir / 'full-backup-2.zip.part').write_bytes(b'partial')
        (store_dir / 'sub.zip').mkdir()

        artifacts = ArtifactStore(str(store_dir)).list_artifacts()

        assert [a['filename'] for a in artifacts] == ['full-backup-1.zip']

    def test_missing_directory_lists_nothing(self, tmp_path):
        assert ArtifactStore(str(tmp_path / 'nope')).list_artifacts() == []

    def test_custom_lister(self, store_dir):
        (store_dir / 'a.zip').write_bytes(b'a')
        (store_dir / 'b.zip').write_bytes(b'b')

        store = ArtifactStore(str(store_dir), lister=lambda d: [d / 'a.zip'])

        assert [a['filename'] for a in store.list_artifacts()] == ['a.zip']


class TestEnsureDirectory:
    """Test backup directory creation."""

    def test_creates_nested_directory(self, tmp_path):
        target = tmp_path / 'a' / 'b' / 'backups'

        ArtifactStore(str(target)).ensure_directory()

        assert target.is_dir()

    def test_failure_raises(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('not a dir')

        with pytest.raises(DirCreationFailed):
            ArtifactStore(str(blocker / 'backups')).ensure_directory()


class TestResolveAndDelete:
    """Test path validation, resolution and deletion."""

    @pytest.mark.parametrize('filename', [
        '../../etc/passwd',
        '../outside.zip',
        'sub/inner.zip',
        '..',
        '',
        'notes.txt',
    ])
    def test_invalid_names_rejected(self, store_dir, filename):
        with pytest.raises(InvalidArtifactPath):
            ArtifactStore(str(store_dir)).resolve(filename)

    def test_traversal_delete_touches_nothing(self, tmp_path, store_dir):
        outside = tmp_path / 'outside.zip'
        outside.write_bytes(b'keep me')

        with pytest.raises(InvalidArtifactPath) as exc_info:
            ArtifactStore(str(store_dir)).delete('../outside.zip')

        assert exc_info.value.code == 'invalid_artifact_path'
        assert outside.read_bytes() == b'keep me'

    def test_symlink_out_of_directory_rejected(self, tmp_path, store_dir):
        target = tmp_path / 'secret.zip'
        target.write_bytes(b'secret')
        (store_dir / 'link.zip').symlink_to(target)

        with pytest.raises(InvalidArtifactPath):
            ArtifactStore(str(store_dir)).resolve('link.zip')

    def test_resolve_existing(self, store_dir):
        (store_dir / 'full-backup-1.zip').write_bytes(b'zip')

        path = ArtifactStore(str(store_dir)).resolve('full-backup-1.zip')

        assert path == (store_dir / 'full-backup-1.zip').resolve()

    def test_missing_artifact(self, store_dir):
        with pytest.raises(ArtifactNotFound):
            ArtifactStore(str(store_dir)).resolve('full-backup-missing.zip')

    def test_delete(self, store_dir):
        (store_dir / 'full-backup-1.zip').write_bytes(b'zip')
        store = ArtifactStore(str(store_dir))

        store.delete('full-backup-1.zip')

        assert not (store_dir / 'full-backup-1.zip').exists()
        assert store.list_artifacts() == []

    def test_delete_permission_denied(self, store_dir):
        (store_dir / 'full-backup-1.zip').write_bytes(b'zip')

        with patch('pathlib.Path.unlink', side_effect=PermissionError('read-only')):
            with pytest.raises(PermissionDenied):
                ArtifactStore(str(store_dir)).delete('full-backup-1.zip')

        assert (store_dir / 'full-backup-1.zip').exists()
