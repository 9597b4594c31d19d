"""
Backup executor - orchestrates a complete backup run.

Workflow:
1. Preflight (tools, storage, working directory)
2. Notify services about the upcoming backup
3. Wait for the grace period
4. Pause writes on every service
5. Snapshot, compress and upload each due target
6. Resume writes on every paused service
7. Enforce remote retention
8. Remove the working directory

Every service paused in step 4 is resumed on every exit path: normal
completion, fatal errors, unexpected exceptions and SIGINT/SIGTERM.
"""

import os
import shutil
import signal
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from serverbackup.config import BackupTarget, Settings
from .control import ServiceController
from .errors import FatalError, RunInterrupted, UploadError
from .frequency import should_run_backup
from .snapshot import create_snapshot, SnapshotError
from .compression import create_archive, archive_filename, get_archive_size, ArchiveError
from .storage import create_storage, StorageError
from .retention import RetentionManager
from .preflight import run_preflight


logger = logging.getLogger(__name__)

STARTING_MESSAGE = "BACKUP STARTING IN {seconds} seconds... "
IN_PROGRESS_MESSAGE = "BACKUP IN PROGRESS... "
COMPLETED_MESSAGE = "BACKUP COMPLETED. "


class RunState(Enum):
    INIT = 'init'
    PREFLIGHT = 'preflight'
    NOTIFY = 'notify'
    GRACE_PERIOD = 'grace_period'
    PAUSE_ALL = 'pause_all'
    PROCESS_TARGETS = 'process_targets'
    RESUME_ALL = 'resume_all'
    ENFORCE_RETENTION = 'enforce_retention'
    CLEANUP = 'cleanup'
    DONE = 'done'
    FATAL_ABORT = 'fatal_abort'
    INTERRUPTED = 'interrupted'


class TargetStatus(Enum):
    SUCCESS = 'success'
    SKIPPED = 'skipped'
    FAILED = 'failed'


class TargetStage(Enum):
    FREQUENCY = 'frequency'
    SNAPSHOT = 'snapshot'
    ARCHIVE = 'archive'
    UPLOAD = 'upload'


@dataclass
class TargetResult:
    """Outcome of one target's pipeline."""

    target: BackupTarget
    status: TargetStatus
    stage: Optional[TargetStage] = None
    remote_key: Optional[str] = None
    local_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RunContext:
    """
    Per-run mutable state.

    ``paused_services`` is appended to only while pausing and drained only
    by ``BackupExecutor._resume_all``. While ``finalizing`` is set, the
    signal handler no longer interrupts the run.
    """

    date_tag: str
    dry_run: bool
    grace_period: int
    paused_services: List[str] = field(default_factory=list)
    state: RunState = RunState.INIT
    finalizing: bool = False

    def mark_paused(self, service: str):
        if service not in self.paused_services:
            self.paused_services.append(service)


@dataclass
class RunReport:
    state: RunState
    exit_code: int
    results: List[TargetResult] = field(default_factory=list)
    retention: Optional[Dict[str, Any]] = None

    def count(self, status: TargetStatus) -> int:
        return sum(1 for result in self.results if result.status == status)


class BackupExecutor:
    """
    Runs one backup pass over all configured targets.

    An executor is single-use: build a new one for every run.
    """

    def __init__(
        self,
        settings: Settings,
        controller: Optional[ServiceController] = None,
        storage=None,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[date] = None
    ):
        """
        Initialize backup executor.

        Args:
            settings: Run settings
            controller: Service controller (defaults to screen sessions)
            storage: Storage backend (defaults to the configured backend,
                created during preflight)
            sleep: Blocking sleep used for the grace period and settle waits
            today: Date of the run (defaults to the current local date)
        """
        self.settings = settings
        self.controller = controller or ServiceController(dry_run=settings.dry_run, sleep=sleep)
        self.storage = storage
        self.today = today or date.today()
        self._sleep = sleep

        self.context = RunContext(
            date_tag=self.today.strftime('%Y-%m-%d'),
            dry_run=settings.dry_run,
            grace_period=settings.grace_period
        )
        self.results: List[TargetResult] = []
        self.retention_summary = None
        self._previous_handlers = {}
        self._interrupt_requested = threading.Event()
        self._interrupt_signum = signal.SIGTERM

    def request_interrupt(self, signum: int = signal.SIGTERM):
        """
        Ask a run on another thread to stop at the next target boundary.

        Signal handlers are only installed when the run owns the main thread;
        daemon mode uses this instead. The run skips remaining targets and
        retention, resumes every paused service and exits 1.
        """
        logger.warning(f"Interrupt requested (signal {signum})")
        self._interrupt_signum = signum
        self._interrupt_requested.set()

    def _check_interrupt(self):
        if self._interrupt_requested.is_set() and not self.context.finalizing:
            raise RunInterrupted(self._interrupt_signum)

    def execute(self) -> RunReport:
        """
        Execute the backup run.

        Never raises for pipeline failures; the outcome is reported through
        the returned RunReport's state and exit code.
        """
        if self.context.state != RunState.INIT:
            raise RuntimeError("BackupExecutor instances are single-use")

        logger.info(f"Starting backup process - {self.context.date_tag}")
        if self.settings.dry_run:
            logger.info("[DRY RUN] No service, upload or deletion will be performed")

        exit_code = 0
        self._install_signal_handlers()

        try:
            self._preflight()

            with self._resume_guard():
                self._notify_all()
                self._grace_period()
                self._check_interrupt()
                self._pause_all()
                self._process_targets()

            self._check_interrupt()
            self._enforce_retention()
            self._transition(RunState.CLEANUP)
            self._cleanup()
            self._transition(RunState.DONE)
            self._log_summary()
            logger.info("Backup process completed.")

        except FatalError as e:
            self.context.finalizing = True
            logger.error(f"Fatal error encountered: {e}")
            self._transition(RunState.FATAL_ABORT)
            self._cleanup()
            logger.info("Exiting script.")
            exit_code = 1

        except RunInterrupted as e:
            self.context.finalizing = True
            logger.warning(f"Script interrupted ({e}). Remaining targets and retention skipped.")
            self._transition(RunState.INTERRUPTED)
            # No-op unless the interrupt landed before the guard's drain started
            self._resume_all(notify_completion=False)
            self._cleanup()
            exit_code = 1

        except Exception as e:
            self.context.finalizing = True
            logger.exception(f"Unexpected error during backup: {e}")
            self._transition(RunState.FATAL_ABORT)
            self._resume_all(notify_completion=False)
            self._cleanup()
            exit_code = 1

        finally:
            self._restore_signal_handlers()

        return RunReport(
            state=self.context.state,
            exit_code=exit_code,
            results=list(self.results),
            retention=self.retention_summary
        )

    def _transition(self, state: RunState):
        logger.debug(f"Run state: {self.context.state.value} -> {state.value}")
        self.context.state = state

    def _preflight(self):
        self._transition(RunState.PREFLIGHT)

        if self.storage is None:
            try:
                self.storage = create_storage(self.settings)
            except (StorageError, ValueError) as e:
                raise FatalError(str(e))

        run_preflight(self.settings, self.storage)

    @contextmanager
    def _resume_guard(self):
        """
        Resume every paused service when the block exits, however it exits.
        """
        completed = False
        try:
            yield
            completed = True
        except BaseException as e:
            self.context.finalizing = True
            if self.context.paused_services:
                logger.error(f"Backup aborted ({e}). Resuming server writes before exiting...")
            raise
        finally:
            # Signals are ignored from here until every paused service is resumed
            self.context.finalizing = True
            if completed:
                self._transition(RunState.RESUME_ALL)
                logger.info("Resuming server writes...")
            self._resume_all(notify_completion=completed)
            if completed:
                self.context.finalizing = False

    def _resume_all(self, notify_completion: bool):
        """Drain the paused set, resuming each service exactly once."""
        paused = self.context.paused_services
        while paused:
            service = paused[0]
            resumed = False
            try:
                self.controller.resume_writes(service)
                resumed = True
            except Exception as e:
                logger.error(f"Failed to resume writes for {service}: {e}")
            finally:
                paused.pop(0)
            if resumed and notify_completion:
                self.controller.notify(service, COMPLETED_MESSAGE, color='green')

    def _notify_all(self):
        self._transition(RunState.NOTIFY)
        logger.info("Notifying users on all servers about the upcoming backup...")

        message = STARTING_MESSAGE.format(seconds=self.settings.grace_period)
        for service in self.settings.services:
            self.controller.notify(service, message, color='yellow')

    def _grace_period(self):
        self._transition(RunState.GRACE_PERIOD)
        if self.settings.grace_period > 0:
            logger.info(f"Waiting {self.settings.grace_period} seconds before pausing writes...")
            self._sleep(self.settings.grace_period)

    def _pause_all(self):
        self._transition(RunState.PAUSE_ALL)
        logger.info("Pausing server writes...")

        for service in self.settings.services:
            # Recorded before the pause so a failed pause still gets a resume
            self.context.mark_paused(service)
            self.controller.pause_writes(service)
            self.controller.notify(service, IN_PROGRESS_MESSAGE, color='red')

    def _process_targets(self):
        self._transition(RunState.PROCESS_TARGETS)

        for target in self.settings.targets:
            self._check_interrupt()
            try:
                result = self.process_target(target)
            except Exception as e:
                logger.exception(f"Unexpected error processing {target.source_path}: {e}")
                result = TargetResult(target=target, status=TargetStatus.FAILED, error=str(e))
            self.results.append(result)

    def process_target(self, target: BackupTarget) -> TargetResult:
        """
        Run one target through frequency gate, snapshot, archive and upload.

        Failures are logged and reported in the result; the snapshot never
        outlives the target, and an archive that failed to upload is kept in
        the recovery directory.
        """
        logger.info(
            f"Processing: folder={target.source_path}, "
            f"service={target.service_name or ''}, frequency={target.frequency}"
        )

        if not should_run_backup(target.frequency, self.today, self.settings.weekly_backup_day):
            logger.info(f"Skipping {target.source_path} backup due to frequency setting ({target.frequency}).")
            return TargetResult(target=target, status=TargetStatus.SKIPPED, stage=TargetStage.FREQUENCY)

        snapshot_dir = os.path.join(self.settings.work_dir, 'snapshots', target.name)
        archive_path = os.path.join(
            self.settings.work_dir,
            archive_filename(target.name, self.settings.archive_format)
        )

        try:
            create_snapshot(target.source_path, snapshot_dir)
        except SnapshotError as e:
            logger.error(str(e))
            self._remove_path(snapshot_dir)
            return TargetResult(target=target, status=TargetStatus.FAILED, stage=TargetStage.SNAPSHOT, error=str(e))

        try:
            create_archive(snapshot_dir, archive_path, self.settings.archive_format)
            size_mb = get_archive_size(archive_path) / 1024 / 1024
        except ArchiveError as e:
            logger.error(str(e))
            return TargetResult(target=target, status=TargetStatus.FAILED, stage=TargetStage.ARCHIVE, error=str(e))
        finally:
            self._remove_path(snapshot_dir)

        logger.info(f"Archive created: {os.path.basename(archive_path)} ({size_mb:.2f} MB)")

        key = self.storage.key_for(self.context.date_tag, os.path.basename(archive_path))

        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would upload {archive_path} to {self.storage!r}{key}.")
            return TargetResult(target=target, status=TargetStatus.SUCCESS, remote_key=key, local_path=archive_path)

        try:
            remote_key = self._upload(archive_path, key)
        except UploadError as e:
            logger.error(f"{e}. Keeping local backup for troubleshooting.")
            kept_path = self._keep_for_recovery(archive_path)
            return TargetResult(
                target=target,
                status=TargetStatus.FAILED,
                stage=TargetStage.UPLOAD,
                local_path=kept_path,
                error=str(e)
            )

        logger.info(f"Uploaded {archive_path} successfully. Deleting local archive...")
        self._remove_path(archive_path)
        return TargetResult(target=target, status=TargetStatus.SUCCESS, remote_key=remote_key)

    def _upload(self, archive_path: str, key: str) -> str:
        logger.info(f"Uploading {archive_path} to {self.storage!r}{key}...")
        try:
            return self.storage.put(archive_path, key)
        except StorageError as e:
            raise UploadError(f"Failed to upload {archive_path}: {e}")

    def _keep_for_recovery(self, archive_path: str) -> str:
        """Move an archive out of the working directory so cleanup keeps it."""
        filename = f"{self.context.date_tag}-{os.path.basename(archive_path)}"
        dest_path = os.path.join(self.settings.recovery_dir, filename)
        try:
            os.makedirs(self.settings.recovery_dir, exist_ok=True)
            shutil.move(archive_path, dest_path)
            logger.info(f"Archive kept for manual recovery: {dest_path}")
            return dest_path
        except OSError as e:
            logger.error(f"Failed to move {archive_path} to {self.settings.recovery_dir}: {e}")
            return archive_path

    def _enforce_retention(self):
        self._transition(RunState.ENFORCE_RETENTION)
        manager = RetentionManager(self.storage, dry_run=self.settings.dry_run)
        self.retention_summary = manager.enforce(self.settings.max_backups)

    def _cleanup(self):
        """Remove the working directory."""
        if os.path.exists(self.settings.work_dir):
            logger.info("Cleaning up temporary backup directory...")
            self._remove_path(self.settings.work_dir)

    def _remove_path(self, path: str):
        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
            elif os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Warning: Failed to remove {path}: {e}")

    def _log_summary(self):
        succeeded = sum(1 for r in self.results if r.status == TargetStatus.SUCCESS)
        skipped = sum(1 for r in self.results if r.status == TargetStatus.SKIPPED)
        failed = [r for r in self.results if r.status == TargetStatus.FAILED]
        logger.info(f"Targets: {succeeded} succeeded, {skipped} skipped, {len(failed)} failed")
        for result in failed:
            stage = result.stage.value if result.stage else 'unknown'
            logger.info(f"  - {result.target.source_path} failed at {stage}: {result.error}")

    def _handle_signal(self, signum, frame):
        if self.context.finalizing:
            logger.warning(f"Received signal {signum} while finishing up; ignoring")
            return
        logger.warning(f"Received signal {signum}. Resuming server writes for any paused services...")
        raise RunInterrupted(signum)

    def _install_signal_handlers(self):
        # signal.signal() only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread; signal handlers not installed")
            return

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}


def execute_backup(settings: Settings) -> RunReport:
    """
    Execute a backup run with the given settings.

    Args:
        settings: Run settings

    Returns:
        RunReport with the run's final state and exit code
    """
    executor = BackupExecutor(settings)
    return executor.execute()
