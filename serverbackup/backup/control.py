"""
Service control over named GNU screen sessions.

Directives are typed into the server console with ``screen -X stuff``.
Delivery is best-effort: screen only tells us whether the session exists,
never whether the server acted on the directive.
"""

import json
import logging
import subprocess
import time
from typing import Callable

from .errors import BackupError


logger = logging.getLogger(__name__)

# Seconds to let in-flight writes land after save-all before snapshotting
PAUSE_SETTLE_SECONDS = 5

SAVE_OFF = 'save-off'
SAVE_ALL = 'save-all'
SAVE_ON = 'save-on'


class ControlChannelError(BackupError):
    """Raised when a directive could not be handed to the control channel."""
    pass


def tellraw(text: str, color: str) -> str:
    """Build a ``tellraw`` broadcast to all players."""
    component = [{"text": text, "color": color, "bold": True}]
    return f"tellraw @a {json.dumps(component)}"


class ScreenChannel:
    """
    Writes line-oriented directives into a named screen session.
    """

    def __init__(self, screen_binary: str = 'screen', timeout: int = 10):
        self.screen_binary = screen_binary
        self.timeout = timeout

    def send(self, session: str, directive: str):
        """
        Type a directive followed by a newline into the session.

        Args:
            session: Screen session name
            directive: Console command

        Raises:
            ControlChannelError: If screen fails or the session does not exist
        """
        cmd = [self.screen_binary, '-S', session, '-X', 'stuff', f"{directive}\n"]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ControlChannelError(f"{self.screen_binary} is not installed")
        except subprocess.TimeoutExpired:
            raise ControlChannelError(f"Timed out sending to session {session}")
        except OSError as e:
            raise ControlChannelError(f"Failed to run {self.screen_binary}: {e}")

        if result.returncode != 0:
            output = (result.stdout or result.stderr or '').strip()
            raise ControlChannelError(
                f"No usable screen session '{session}' (exit {result.returncode}): {output}"
            )


class ServiceController:
    """
    Pause, resume and notify live services.

    None of the public methods raise: channel failures are logged as
    warnings and the caller's control flow carries on.
    """

    def __init__(self, channel=None, dry_run: bool = False, sleep: Callable[[float], None] = time.sleep):
        self.channel = channel or ScreenChannel()
        self.dry_run = dry_run
        self._sleep = sleep

    def send(self, service: str, directive: str) -> bool:
        """
        Send a directive to a service console.

        Returns:
            True if the channel accepted the directive (or dry-run), False otherwise
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would send command to {service}: {directive}")
            return True

        logger.info(f"Sending command to {service}: {directive}")
        try:
            self.channel.send(service, directive)
            return True
        except ControlChannelError as e:
            logger.warning(f"Failed to send command to {service}: {e}")
            return False

    def notify(self, service: str, message: str, color: str = 'yellow') -> bool:
        return self.send(service, tellraw(message, color))

    def pause_writes(self, service: str):
        """Disable auto-save, flush to disk, then wait for writes to settle."""
        logger.info(f"Pausing writes for {service}...")
        self.send(service, SAVE_OFF)
        self.send(service, SAVE_ALL)
        if not self.dry_run:
            self._sleep(PAUSE_SETTLE_SECONDS)

    def resume_writes(self, service: str):
        """Re-enable auto-save. Harmless on a service that is not paused."""
        logger.info(f"Resuming writes for {service}...")
        self.send(service, SAVE_ON)
