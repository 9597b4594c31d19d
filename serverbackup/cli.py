"""Command-line entry point."""

import argparse
import sys
from typing import Iterable, Optional

from serverbackup import run_backup
from serverbackup.config import ConfigurationError, config


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Back up game-server directories to S3 with writes paused during the snapshot."
    )
    parser.add_argument(
        "-c",
        "--config",
        choices=sorted(config.keys()),
        help="Configuration to load (default: $BACKUP_ENV or 'production').",
    )
    parser.add_argument(
        "-t",
        "--target",
        dest="targets",
        action="append",
        metavar="FOLDER[:SERVICE[:FREQUENCY]]",
        help="Backup target. Repeat for multiple targets; replaces BACKUP_TARGETS.",
    )
    parser.add_argument(
        "--grace-period",
        type=int,
        help="Seconds of warning before writes are paused.",
    )
    parser.add_argument(
        "--max-backups",
        type=int,
        help="Number of dated backup folders to keep in storage.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log every action without touching services, uploading or deleting.",
    )
    parser.add_argument(
        "--daemon",
        action="store_true",
        help="Run continuously, backing up on the BACKUP_SCHEDULE cron expression.",
    )
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    overrides = {}
    if args.targets:
        overrides['BACKUP_TARGETS'] = args.targets
    if args.grace_period is not None:
        overrides['GRACE_PERIOD'] = args.grace_period
    if args.max_backups is not None:
        overrides['MAX_BACKUPS'] = args.max_backups
    if args.dry_run:
        overrides['DRY_RUN'] = True
    return overrides


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    overrides = build_overrides(args)

    try:
        if args.daemon:
            from serverbackup.scheduler import run_daemon
            return run_daemon(args.config, overrides)
        return run_backup(args.config, overrides)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"Unable to start backup: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
