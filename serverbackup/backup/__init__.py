"""
Backup module for serverbackup.

This module handles the core backup functionality including:
- Service control (pause/resume/notify via screen)
- Snapshots (rsync mirror)
- Compression
- Storage (S3 and local)
- Retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, RunContext, RunReport, RunState, TargetResult, TargetStatus, TargetStage
from .control import ServiceController, ScreenChannel
from .snapshot import create_snapshot
from .compression import create_archive
from .storage import S3Storage, LocalStorage
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'RunContext',
    'RunReport',
    'RunState',
    'TargetResult',
    'TargetStatus',
    'TargetStage',
    'ServiceController',
    'ScreenChannel',
    'create_snapshot',
    'create_archive',
    'S3Storage',
    'LocalStorage',
    'RetentionManager'
]
