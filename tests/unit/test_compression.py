"""
Unit tests for compression module (serverbackup/backup/compression.py).
"""

import tarfile
from unittest.mock import patch

import pytest

from serverbackup.backup.compression import (
    create_archive,
    archive_filename,
    get_archive_size,
    ArchiveError
)
from serverbackup.backup.errors import TargetError


class TestCreateArchive:
    """Test create_archive with snapshot directories."""

    def test_archive_root_is_snapshot_basename(self, server_dirs, tmp_path):
        archive = tmp_path / 'mc1.tar.gz'

        result = create_archive(str(server_dirs / 'mc1'), str(archive))

        assert result == str(archive)
        with tarfile.open(archive, 'r:gz') as tar:
            names = tar.getnames()
        assert 'mc1' in names
        assert 'mc1/world/level.dat' in names
        assert all(name == 'mc1' or name.startswith('mc1/') for name in names)

    @pytest.mark.parametrize("compression_format,mode", [
        ("tar.gz", "r:gz"),
        ("tar.bz2", "r:bz2"),
        ("tar.xz", "r:xz"),
        ("none", "r:"),
    ])
    def test_supported_formats(self, server_dirs, tmp_path, compression_format, mode):
        archive = tmp_path / archive_filename('lobby', compression_format)

        create_archive(str(server_dirs / 'lobby'), str(archive), compression_format)

        with tarfile.open(archive, mode) as tar:
            assert 'lobby/world/level.dat' in tar.getnames()

    def test_invalid_format(self, server_dirs, tmp_path):
        with pytest.raises(ValueError, match="Invalid compression format"):
            create_archive(str(server_dirs / 'mc1'), str(tmp_path / 'a.zip'), 'zip')

    def test_missing_snapshot(self, tmp_path):
        with pytest.raises(ArchiveError, match='does not exist'):
            create_archive(str(tmp_path / 'gone'), str(tmp_path / 'gone.tar.gz'))

    def test_failure_removes_partial_archive(self, server_dirs, tmp_path):
        archive = tmp_path / 'mc1.tar.gz'

        with patch('serverbackup.backup.compression.tarfile.TarFile.add', side_effect=OSError('No space left on device')):
            with pytest.raises(ArchiveError, match='No space left'):
                create_archive(str(server_dirs / 'mc1'), str(archive))

        assert not archive.exists()

    def test_archive_error_is_target_error(self):
        assert issubclass(ArchiveError, TargetError)


class TestArchiveFilename:

    @pytest.mark.parametrize("compression_format,expected", [
        ("tar.gz", "mc1.tar.gz"),
        ("tar.bz2", "mc1.tar.bz2"),
        ("tar.xz", "mc1.tar.xz"),
        ("none", "mc1.tar"),
    ])
    def test_extensions(self, compression_format, expected):
        assert archive_filename('mc1', compression_format) == expected

    def test_invalid_format(self):
        with pytest.raises(ValueError):
            archive_filename('mc1', 'rar')


class TestGetArchiveSize:

    def test_size(self, tmp_path):
        archive = tmp_path / 'a.tar.gz'
        archive.write_bytes(b'x' * 2048)

        assert get_archive_size(str(archive)) == 2048

    def test_missing(self, tmp_path):
        with pytest.raises(ArchiveError, match='Archive not found'):
            get_archive_size(str(tmp_path / 'missing.tar.gz'))
