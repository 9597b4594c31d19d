"""Decides whether a target is due for backup on a given day."""

import logging
from datetime import date

from serverbackup.config import FREQUENCIES


logger = logging.getLogger(__name__)


def should_run_backup(frequency: str, today: date, weekly_day: int = 7) -> bool:
    """
    Check if a backup with the given frequency runs today.

    Args:
        frequency: 'daily', 'weekly' or 'monthly'
        today: Current date
        weekly_day: ISO weekday on which weekly backups run (7 = Sunday)

    Returns:
        True if the backup is due. Unknown frequencies never run.
    """
    if frequency == 'daily':
        return True
    if frequency == 'weekly':
        return today.isoweekday() == weekly_day
    if frequency == 'monthly':
        return today.day == 1

    logger.warning(f"Unknown frequency: {frequency}. Valid options: {list(FREQUENCIES)}. Skipping...")
    return False
