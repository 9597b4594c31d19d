#!/usr/bin/env python3
"""Backup runner, suitable for cron"""
import sys
from serverbackup.cli import main

if __name__ == '__main__':
    # Exit status: 0 on completion (even with per-target failures), non-zero on abort
    sys.exit(main())
