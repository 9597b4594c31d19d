"""
Checks that must pass before any service is touched.

Every failure raises FatalError; nothing has been paused yet at this point,
so the executor can abort without resuming anything.
"""

import os
import shutil
import logging
from typing import Iterable

from .errors import FatalError
from .storage import StorageError


logger = logging.getLogger(__name__)


def required_tools(settings) -> list:
    """Binaries the run needs: rsync always, screen when any target has a service."""
    tools = ['rsync']
    if settings.services:
        tools.append('screen')
    return tools


def check_tools(tools: Iterable[str]):
    """
    Raises:
        FatalError: If any tool is not on PATH
    """
    for tool in tools:
        if shutil.which(tool) is None:
            raise FatalError(f"{tool} is not installed. Please install it to run this script.")
        logger.debug(f"Found required tool: {tool}")


def check_storage(storage):
    """
    Raises:
        FatalError: If the storage backend is unreachable
    """
    try:
        storage.test_connection()
    except StorageError as e:
        raise FatalError(
            f"Unable to access storage {storage!r}. Check permissions and network connectivity: {e}"
        )
    logger.info(f"Storage {storage!r} is reachable")


def check_work_dir(work_dir: str):
    """
    Raises:
        FatalError: If the working directory cannot be created
    """
    try:
        os.makedirs(work_dir, exist_ok=True)
    except OSError as e:
        raise FatalError(f"Unable to create working directory {work_dir}: {e}")


def run_preflight(settings, storage):
    """Run every preflight check in order."""
    logger.info("Running preflight checks...")
    check_tools(required_tools(settings))
    check_storage(storage)
    check_work_dir(settings.work_dir)
