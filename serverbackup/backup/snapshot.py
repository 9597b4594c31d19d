"""
Point-in-time snapshots of a server directory.

Uses ``rsync -a --delete`` so the destination becomes an exact mirror of
the source: contents, structure, permissions and timestamps are copied and
anything absent from the source is removed from the destination.
"""

import logging
import subprocess
from pathlib import Path

from .errors import TargetError


logger = logging.getLogger(__name__)

RSYNC_BINARY = 'rsync'


class SnapshotError(TargetError):
    """Raised when snapshot creation fails."""
    pass


def build_rsync_command(source_dir: str, dest_dir: str) -> list:
    # Trailing slashes copy the directory contents, not the directory itself
    return [
        RSYNC_BINARY,
        '-a',
        '--delete',
        f"{str(source_dir).rstrip('/')}/",
        f"{str(dest_dir).rstrip('/')}/",
    ]


def create_snapshot(source_dir: str, dest_dir: str):
    """
    Mirror source_dir into dest_dir.

    Args:
        source_dir: Live server directory
        dest_dir: Snapshot directory (created if missing)

    Raises:
        SnapshotError: If the source is missing or rsync reports any error
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise SnapshotError(f"Source directory does not exist: {source_dir}")

    try:
        Path(dest_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SnapshotError(f"Failed to create snapshot directory {dest_dir}: {e}")

    logger.info(f"Creating snapshot of {source_dir} in {dest_dir}...")
    cmd = build_rsync_command(source_dir, dest_dir)

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError:
        raise SnapshotError(f"{RSYNC_BINARY} is not installed")
    except OSError as e:
        raise SnapshotError(f"Failed to run {RSYNC_BINARY}: {e}")

    if result.returncode != 0:
        stderr = (result.stderr or '').strip()
        raise SnapshotError(
            f"Failed to create snapshot of {source_dir} (rsync exit {result.returncode}): {stderr}"
        )
