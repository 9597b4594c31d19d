"""
Compression of snapshot directories into transportable archives.

Supports tar with optional compression:
- tar.gz: Gzip compressed tar (default)
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import tarfile
import logging
from pathlib import Path

from .errors import TargetError


logger = logging.getLogger(__name__)

# format -> (extension, tarfile mode)
FORMATS = {
    'tar.gz': ('tar.gz', 'w:gz'),
    'tar.bz2': ('tar.bz2', 'w:bz2'),
    'tar.xz': ('tar.xz', 'w:xz'),
    'none': ('tar', 'w'),
}


class ArchiveError(TargetError):
    """Raised when archive creation fails."""
    pass


def archive_filename(name: str, compression_format: str = 'tar.gz') -> str:
    """
    Archive filename for a target.

    Args:
        name: Target name (base name of its source directory)
        compression_format: Compression format

    Returns:
        Filename (without path), e.g. ``mc1.tar.gz``

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMATS.keys())}"
        )
    extension, _ = FORMATS[compression_format]
    return f"{name}.{extension}"


def create_archive(snapshot_dir: str, archive_file: str, compression_format: str = 'tar.gz') -> str:
    """
    Compress a snapshot directory into a single archive.

    The archive's only root entry is the snapshot directory's base name,
    so extracting it recreates that directory.

    Args:
        snapshot_dir: Directory to archive
        archive_file: Full path of the archive to write
        compression_format: One of FORMATS

    Returns:
        Path to the created archive

    Raises:
        ArchiveError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMATS.keys())}"
        )

    snapshot = Path(snapshot_dir)
    if not snapshot.is_dir():
        raise ArchiveError(f"Snapshot directory does not exist: {snapshot_dir}")

    _, mode = FORMATS[compression_format]
    logger.info(f"Compressing snapshot {snapshot_dir} into {archive_file}...")

    try:
        with tarfile.open(archive_file, mode) as tar:
            tar.add(str(snapshot), arcname=snapshot.name, recursive=True)
        return str(archive_file)
    except Exception as e:
        # Never leave a truncated archive behind
        if os.path.exists(archive_file):
            try:
                os.remove(archive_file)
            except OSError:
                logger.warning(f"Failed to remove partial archive {archive_file}")
        raise ArchiveError(f"Failed to compress snapshot {snapshot_dir}: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")
