import os
import logging
from typing import Any, Dict, Optional


NOISY_LOGGERS = ('boto3', 'botocore', 's3transfer', 'urllib3', 'apscheduler.executors')


def configure_logging(settings):
    """
    Configure run logging.

    The log file is truncated so it only ever holds the latest run.
    """

    # Create log directory if it doesn't exist
    log_dir = os.path.dirname(settings.log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # Set log level based on settings
    log_level = logging.DEBUG if settings.debug else logging.INFO

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    # File handler, overwritten at the start of every run
    file_handler = logging.FileHandler(settings.log_file, mode='w')
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    # Configure root logger, replacing handlers from a previous run
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_executor(config_name: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
    """Backup executor factory"""
    from serverbackup.config import load_settings
    from serverbackup.backup.executor import BackupExecutor

    settings = load_settings(config_name, overrides)

    # Configure logging
    configure_logging(settings)

    return BackupExecutor(settings)


def run_backup(config_name: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> int:
    """
    Run one backup pass.

    Returns:
        Process exit code (0 on completion, 1 on fatal abort or interrupt)
    """
    executor = create_executor(config_name, overrides)
    report = executor.execute()
    return report.exit_code
