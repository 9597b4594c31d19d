"""
Shared pytest fixtures for serverbackup tests.

This module provides fixtures for:
- Settings with temporary working, recovery and log locations
- Mock fixtures for external services (S3, screen, rsync)
- Sample server directories
"""

import shutil
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from serverbackup.config import load_settings
from serverbackup.backup.control import ServiceController
from serverbackup.backup.snapshot import SnapshotError


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches real AWS."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def make_settings(tmp_path):
    """
    Factory building Settings rooted in tmp_path.

    Keyword arguments are config keys overriding the defaults, e.g.
    ``make_settings(DRY_RUN=True, BACKUP_TARGETS=['/data/mc1:mc1'])``.
    """
    def _make(**overrides):
        values = {
            'S3_BUCKET': 'test-bucket',
            'S3_PREFIX': '',
            'AWS_REGION': 'us-east-1',
            'STORAGE_BACKEND': 's3',
            'LOCAL_STORAGE_DIR': str(tmp_path / 'remote'),
            'BACKUP_WORK_DIR': str(tmp_path / 'work'),
            'BACKUP_RECOVERY_DIR': str(tmp_path / 'failed'),
            'GRACE_PERIOD': 15,
            'DEFAULT_FREQUENCY': 'daily',
            'WEEKLY_BACKUP_DAY': 7,
            'DRY_RUN': False,
            'MAX_BACKUPS': 7,
            'BACKUP_LOG_FILE': str(tmp_path / 'logs' / 'backup.log'),
            'ARCHIVE_FORMAT': 'tar.gz',
            'BACKUP_TARGETS': [],
            'BACKUP_SCHEDULE': '0 4 * * *',
            'DEBUG': False,
        }
        values.update(overrides)
        return load_settings('production', values)

    return _make


@pytest.fixture
def controller():
    """ServiceController stand-in recording every call."""
    return MagicMock(spec=ServiceController)


@pytest.fixture
def server_dirs(tmp_path):
    """
    Create three server directories with world data.

    Creates:
    - servers/mc1/world/level.dat, servers/mc1/server.properties
    - servers/mc2/world/level.dat
    - servers/lobby/world/level.dat
    """
    root = tmp_path / 'servers'
    for name in ('mc1', 'mc2', 'lobby'):
        world = root / name / 'world'
        world.mkdir(parents=True)
        (world / 'level.dat').write_bytes(f'{name} level data'.encode())
    (root / 'mc1' / 'server.properties').write_text('motd=test\n')
    return root


def _copy_snapshot(source_dir, dest_dir):
    if not Path(source_dir).is_dir():
        raise SnapshotError(f"Source directory does not exist: {source_dir}")
    shutil.copytree(source_dir, dest_dir, dirs_exist_ok=True)


@pytest.fixture
def fake_rsync():
    """Replace the rsync snapshot with a plain directory copy."""
    with patch('serverbackup.backup.executor.create_snapshot', side_effect=_copy_snapshot) as mock_snapshot:
        yield mock_snapshot


@pytest.fixture
def tools_available():
    """Pretend rsync and screen are installed."""
    with patch('serverbackup.backup.preflight.shutil.which', side_effect=lambda tool: f'/usr/bin/{tool}') as mock_which:
        yield mock_which


@pytest.fixture
def no_sleep():
    """Sleep stand-in recording requested delays."""
    return MagicMock()


@pytest.fixture
def dated_folders(mock_s3):
    """
    Nine dated backup folders plus a stray root object in the test bucket.
    """
    bucket = mock_s3.Bucket('test-bucket')
    dates = [f'2024-01-{day:02d}' for day in range(1, 10)]
    for folder in dates:
        bucket.put_object(Key=f'{folder}/mc1.tar.gz', Body=b'archive')
    bucket.put_object(Key='notes.txt', Body=b'not a backup')
    return dates
