"""
Exception hierarchy shared by the backup pipeline.

The executor routes every failure by its class:
- FatalError: aborts the run (services are resumed first)
- TargetError: skips one target, the run continues
- RetentionError: one remote deletion failed, the sweep continues
- RunInterrupted: SIGINT/SIGTERM received, resume and exit
"""


class BackupError(Exception):
    """Base class for backup pipeline errors."""
    pass


class FatalError(BackupError):
    """Raised when the run cannot continue (missing tooling, unreachable storage)."""
    pass


class TargetError(BackupError):
    """Raised when a single target fails at one stage of its pipeline."""
    pass


class UploadError(TargetError):
    """Raised when an archive could not be uploaded to remote storage."""
    pass


class RetentionError(BackupError):
    """Raised when a single remote backup folder could not be deleted."""
    pass


class RunInterrupted(BaseException):
    """
    Raised from the signal handler when the run is interrupted.

    Derives from BaseException so per-target ``except Exception`` blocks
    never swallow it.
    """

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum
