import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, List, Dict, Any, Iterable, Union


logger = logging.getLogger(__name__)

FREQUENCIES = ('daily', 'weekly', 'monthly')
STORAGE_BACKENDS = ('s3', 'local')
ARCHIVE_FORMATS = ('tar.gz', 'tar.bz2', 'tar.xz', 'none')


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class BackupTarget:
    """A directory to back up, optionally owned by a live service."""

    source_path: str
    service_name: Optional[str] = None
    frequency: str = 'daily'

    @property
    def name(self) -> str:
        """Base name of the source directory; names the snapshot and archive."""
        return Path(self.source_path.rstrip('/') or '/').name


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for one backup run."""

    bucket_name: str
    prefix: str
    region: Optional[str]
    storage_backend: str
    local_storage_dir: str
    work_dir: str
    recovery_dir: str
    grace_period: int
    default_frequency: str
    weekly_backup_day: int
    dry_run: bool
    max_backups: int
    log_file: str
    archive_format: str
    schedule_cron: str
    debug: bool = False
    targets: Tuple[BackupTarget, ...] = field(default_factory=tuple)

    @property
    def services(self) -> List[str]:
        """Distinct service names in target order."""
        seen = []
        for target in self.targets:
            if target.service_name and target.service_name not in seen:
                seen.append(target.service_name)
        return seen


class Config:
    """Base configuration"""

    # Remote storage
    S3_BUCKET = os.environ.get('S3_BUCKET') or ''
    S3_PREFIX = os.environ.get('S3_PREFIX') or ''
    AWS_REGION = os.environ.get('AWS_REGION') or None
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND') or 's3'
    LOCAL_STORAGE_DIR = os.environ.get('LOCAL_STORAGE_DIR') or '/data/backups'

    # Working directories
    BACKUP_WORK_DIR = os.environ.get('BACKUP_WORK_DIR') or '/tmp/server-backups'
    BACKUP_RECOVERY_DIR = os.environ.get('BACKUP_RECOVERY_DIR') or '/tmp/server-backups-failed'

    # Run behaviour
    GRACE_PERIOD = os.environ.get('GRACE_PERIOD') or 15
    DEFAULT_FREQUENCY = os.environ.get('DEFAULT_FREQUENCY') or 'daily'
    WEEKLY_BACKUP_DAY = os.environ.get('WEEKLY_BACKUP_DAY') or 7  # ISO weekday, 7 = Sunday
    DRY_RUN = os.environ.get('DRY_RUN', 'false')
    MAX_BACKUPS = os.environ.get('MAX_BACKUPS') or 7
    ARCHIVE_FORMAT = os.environ.get('ARCHIVE_FORMAT') or 'tar.gz'

    # Logging
    BACKUP_LOG_FILE = os.environ.get('BACKUP_LOG_FILE') or '/var/log/serverbackup.log'
    DEBUG = os.environ.get('DEBUG', 'false')

    # Targets, format: folder:service:frequency (service and frequency are optional)
    BACKUP_TARGETS = os.environ.get('BACKUP_TARGETS') or ''

    # Daemon mode
    BACKUP_SCHEDULE = os.environ.get('BACKUP_SCHEDULE') or '0 4 * * *'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    DRY_RUN = True
    GRACE_PERIOD = 0

    # Keep everything under the project's data directory
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    STORAGE_BACKEND = 'local'
    LOCAL_STORAGE_DIR = os.path.join(DATA_DIR, 'remote')
    BACKUP_WORK_DIR = os.path.join(DATA_DIR, 'work')
    BACKUP_RECOVERY_DIR = os.path.join(DATA_DIR, 'failed')
    BACKUP_LOG_FILE = os.path.join(DATA_DIR, 'logs', 'serverbackup.log')


class ProductionConfig(Config):
    """Production configuration"""
    pass


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def parse_bool(value: Union[str, bool, None]) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    normalized = str(value).strip().lower()
    if normalized in ('1', 'true', 'yes', 'on'):
        return True
    if normalized in ('0', 'false', 'no', 'off', ''):
        return False
    raise ConfigurationError(f"Invalid boolean value: {value!r}")


def parse_int(value: Any, name: str, minimum: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


def parse_target_entry(entry: str, default_frequency: str) -> Optional[BackupTarget]:
    """
    Parse one ``folder:service:frequency`` entry.

    Service and frequency are optional; a blank frequency falls back to
    ``default_frequency``. Entries without a folder are logged and skipped.

    Args:
        entry: Raw configuration entry
        default_frequency: Frequency applied when the entry omits one

    Returns:
        BackupTarget, or None if the entry has no folder

    Raises:
        ConfigurationError: If the folder has no base name (e.g. ``/``)
    """
    parts = entry.strip().split(':')
    folder = parts[0].strip() if parts else ''
    service = parts[1].strip() if len(parts) > 1 else ''
    frequency = parts[2].strip() if len(parts) > 2 else ''

    if not folder:
        logger.error(f"Folder is required. Skipping entry: {entry}")
        return None

    target = BackupTarget(
        source_path=folder,
        service_name=service or None,
        frequency=frequency or default_frequency
    )
    if not target.name:
        raise ConfigurationError(f"Cannot derive an archive name from folder '{folder}'")
    return target


def parse_targets(entries: Union[str, Iterable[str]], default_frequency: str) -> Tuple[BackupTarget, ...]:
    """
    Parse the ordered target list.

    Args:
        entries: Either a string of entries separated by commas/newlines,
            or an iterable of individual entries
        default_frequency: Frequency applied when an entry omits one

    Returns:
        Tuple of BackupTarget in configuration order

    Raises:
        ConfigurationError: If two targets share the same directory name
    """
    if isinstance(entries, str):
        entries = re.split(r'[,\n]', entries)

    targets = []
    names = set()
    for entry in entries:
        if not entry or not entry.strip():
            continue
        target = parse_target_entry(entry, default_frequency)
        if target is None:
            continue
        if target.name in names:
            raise ConfigurationError(
                f"Duplicate target name '{target.name}' ({target.source_path}); "
                f"archive names would collide"
            )
        names.add(target.name)
        targets.append(target)

    return tuple(targets)


def load_settings(config_name: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build the immutable run settings from a config class.

    Args:
        config_name: Key into ``config`` (defaults to $BACKUP_ENV or 'production')
        overrides: Optional mapping of config keys (e.g. ``{'DRY_RUN': True}``)
            applied on top of the config class

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If a value is missing or invalid
    """
    if config_name is None:
        config_name = os.environ.get('BACKUP_ENV', 'production')

    if config_name not in config:
        raise ConfigurationError(
            f"Unknown configuration: {config_name}. Valid options: {list(config.keys())}"
        )

    config_class = config[config_name]
    values = {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}
    values.update(overrides or {})

    default_frequency = str(values['DEFAULT_FREQUENCY']).strip().lower()
    if default_frequency not in FREQUENCIES:
        raise ConfigurationError(
            f"Invalid default frequency: {default_frequency}. Valid options: {list(FREQUENCIES)}"
        )

    storage_backend = str(values['STORAGE_BACKEND']).strip().lower()
    if storage_backend not in STORAGE_BACKENDS:
        raise ConfigurationError(
            f"Invalid storage backend: {storage_backend}. Valid options: {list(STORAGE_BACKENDS)}"
        )

    archive_format = str(values['ARCHIVE_FORMAT']).strip()
    if archive_format not in ARCHIVE_FORMATS:
        raise ConfigurationError(
            f"Invalid archive format: {archive_format}. Valid options: {list(ARCHIVE_FORMATS)}"
        )

    bucket_name = str(values['S3_BUCKET']).strip()
    if storage_backend == 's3' and not bucket_name:
        raise ConfigurationError("S3_BUCKET is required when STORAGE_BACKEND is 's3'")

    weekly_day = parse_int(values['WEEKLY_BACKUP_DAY'], 'WEEKLY_BACKUP_DAY', minimum=1)
    if weekly_day > 7:
        raise ConfigurationError(f"WEEKLY_BACKUP_DAY must be between 1 and 7, got {weekly_day}")

    return Settings(
        bucket_name=bucket_name,
        prefix=str(values['S3_PREFIX']).strip('/'),
        region=values['AWS_REGION'],
        storage_backend=storage_backend,
        local_storage_dir=str(values['LOCAL_STORAGE_DIR']),
        work_dir=str(values['BACKUP_WORK_DIR']),
        recovery_dir=str(values['BACKUP_RECOVERY_DIR']),
        grace_period=parse_int(values['GRACE_PERIOD'], 'GRACE_PERIOD', minimum=0),
        default_frequency=default_frequency,
        weekly_backup_day=weekly_day,
        dry_run=parse_bool(values['DRY_RUN']),
        max_backups=parse_int(values['MAX_BACKUPS'], 'MAX_BACKUPS', minimum=0),
        log_file=str(values['BACKUP_LOG_FILE']),
        archive_format=archive_format,
        schedule_cron=str(values['BACKUP_SCHEDULE']).strip(),
        debug=parse_bool(values['DEBUG']),
        targets=parse_targets(values['BACKUP_TARGETS'], default_frequency),
    )
