"""
Unit tests for service control (serverbackup/backup/control.py).

Tests ScreenChannel and ServiceController directive delivery.
"""

import json
import subprocess
from unittest.mock import MagicMock, patch, call

import pytest

from serverbackup.backup.control import (
    ScreenChannel,
    ServiceController,
    ControlChannelError,
    PAUSE_SETTLE_SECONDS,
    tellraw
)


class TestScreenChannel:
    """Test ScreenChannel subprocess invocation."""

    @patch('serverbackup.backup.control.subprocess.run')
    def test_send_types_directive_into_session(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout='', stderr='')

        ScreenChannel().send('mc1', 'save-all')

        cmd = mock_run.call_args[0][0]
        assert cmd == ['screen', '-S', 'mc1', '-X', 'stuff', 'save-all\n']

    @patch('serverbackup.backup.control.subprocess.run')
    def test_missing_session_raises(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout='No screen session found.\n', stderr='')

        with pytest.raises(ControlChannelError, match='No usable screen session'):
            ScreenChannel().send('ghost', 'save-on')

    @patch('serverbackup.backup.control.subprocess.run', side_effect=FileNotFoundError())
    def test_screen_not_installed(self, mock_run):
        with pytest.raises(ControlChannelError, match='not installed'):
            ScreenChannel().send('mc1', 'save-on')

    @patch('serverbackup.backup.control.subprocess.run',
           side_effect=subprocess.TimeoutExpired(cmd='screen', timeout=10))
    def test_timeout(self, mock_run):
        with pytest.raises(ControlChannelError, match='Timed out'):
            ScreenChannel().send('mc1', 'save-on')


class TestServiceController:
    """Test ServiceController directive sequences."""

    def test_pause_sends_save_off_then_save_all_then_settles(self):
        channel = MagicMock()
        sleep = MagicMock()
        controller = ServiceController(channel, sleep=sleep)

        controller.pause_writes('mc1')

        assert channel.send.call_args_list == [call('mc1', 'save-off'), call('mc1', 'save-all')]
        sleep.assert_called_once_with(PAUSE_SETTLE_SECONDS)

    def test_resume_sends_save_on(self):
        channel = MagicMock()
        controller = ServiceController(channel, sleep=MagicMock())

        controller.resume_writes('mc1')

        channel.send.assert_called_once_with('mc1', 'save-on')

    def test_resume_is_idempotent(self):
        channel = MagicMock()
        controller = ServiceController(channel, sleep=MagicMock())

        controller.resume_writes('mc1')
        controller.resume_writes('mc1')

        assert channel.send.call_args_list == [call('mc1', 'save-on'), call('mc1', 'save-on')]

    def test_notify_sends_tellraw(self):
        channel = MagicMock()
        controller = ServiceController(channel, sleep=MagicMock())

        controller.notify('lobby', 'BACKUP STARTING IN 15 seconds... ')

        directive = channel.send.call_args[0][1]
        assert directive.startswith('tellraw @a ')
        component = json.loads(directive[len('tellraw @a '):])
        assert component == [{"text": "BACKUP STARTING IN 15 seconds... ", "color": "yellow", "bold": True}]

    def test_channel_failure_is_logged_not_raised(self, caplog):
        channel = MagicMock()
        channel.send.side_effect = ControlChannelError("No usable screen session 'mc1'")
        sleep = MagicMock()
        controller = ServiceController(channel, sleep=sleep)

        assert controller.send('mc1', 'save-on') is False
        controller.pause_writes('mc1')

        assert "Failed to send command to mc1" in caplog.text
        # Settle wait still happens; delivery is never confirmed anyway
        sleep.assert_called_once_with(PAUSE_SETTLE_SECONDS)

    def test_dry_run_never_touches_channel(self, caplog):
        caplog.set_level('INFO')
        channel = MagicMock()
        sleep = MagicMock()
        controller = ServiceController(channel, dry_run=True, sleep=sleep)

        controller.notify('mc1', 'hello')
        controller.pause_writes('mc1')
        controller.resume_writes('mc1')

        channel.send.assert_not_called()
        sleep.assert_not_called()
        assert '[DRY RUN] Would send command to mc1: save-off' in caplog.text
        assert '[DRY RUN] Would send command to mc1: save-on' in caplog.text


def test_tellraw_escapes_quotes():
    directive = tellraw('say "hi"', 'green')

    assert json.loads(directive[len('tellraw @a '):])[0]['text'] == 'say "hi"'
