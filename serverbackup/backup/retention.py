"""
Retention policy enforcement for remote backups.

Keeps the newest ``max_backups`` dated folders under the storage prefix and
deletes the rest. Folder names are zero-padded ``YYYY-MM-DD`` so a plain
string sort is also a chronological sort.
"""

import re
import logging
from typing import Any, Dict, List

from .errors import RetentionError
from .storage import StorageError


logger = logging.getLogger(__name__)

DATE_FOLDER_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}/$')


class RetentionManager:
    """
    Enforces the maximum number of dated backup folders in remote storage.
    """

    def __init__(self, storage, dry_run: bool = False):
        """
        Initialize retention manager.

        Args:
            storage: Storage backend (S3Storage or LocalStorage)
            dry_run: Log deletions instead of performing them
        """
        self.storage = storage
        self.dry_run = dry_run

    def list_backup_folders(self) -> List[str]:
        """
        List dated backup folders, oldest first.

        Entries that are not ``YYYY-MM-DD`` folders are ignored.

        Raises:
            StorageError: If listing fails
        """
        entries = self.storage.list_entries()
        return sorted(entry for entry in entries if DATE_FOLDER_PATTERN.match(entry))

    def enforce(self, max_backups: int) -> Dict[str, Any]:
        """
        Delete the oldest dated folders beyond max_backups.

        Each deletion is independent: a failure is logged and the sweep
        continues with the next folder.

        Args:
            max_backups: Number of dated folders to keep

        Returns:
            Dict with summary of cleanup operations:
            {
                'found': int,
                'deleted': List[str],
                'failed': List[str],
                'planned': List[str]
            }
        """
        summary = {
            'found': 0,
            'deleted': [],
            'failed': [],
            'planned': []
        }

        logger.info(f"Checking for old backups in {self.storage!r}...")

        try:
            folders = self.list_backup_folders()
        except StorageError as e:
            logger.error(f"Failed to list backups for retention: {e}")
            return summary

        summary['found'] = len(folders)

        if len(folders) <= max_backups:
            logger.info("No old backups to delete.")
            return summary

        to_delete = folders[:len(folders) - max_backups]
        summary['planned'] = to_delete
        logger.info(f"Deleting old backups: {', '.join(to_delete)}")

        for folder in to_delete:
            if self.dry_run:
                logger.info(f"[DRY RUN] Would delete {folder} from {self.storage!r}.")
                continue

            try:
                self._delete_folder(folder)
                summary['deleted'].append(folder)
            except RetentionError as e:
                logger.error(str(e))
                summary['failed'].append(folder)

        logger.info(
            f"Retention enforcement complete. "
            f"Found: {summary['found']}, "
            f"Deleted: {len(summary['deleted'])}, "
            f"Failed: {len(summary['failed'])}"
        )
        return summary

    def _delete_folder(self, folder: str):
        logger.info(f"Deleting {folder} from {self.storage!r}...")
        try:
            self.storage.delete(folder, recursive=True)
        except StorageError as e:
            raise RetentionError(f"Failed to delete {folder}: {e}")
