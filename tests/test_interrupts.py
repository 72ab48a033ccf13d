"""Tests for claw.workflow.interrupts module."""

import io
import os

import pytest

from claw.workflow.interrupts import (
    CTRL_C,
    HOTKEYS,
    HotkeyListener,
    InterruptChannel,
    InterruptCommand,
    help_text,
    key_to_command,
)


class TestKeyToCommand:
    """Tests for key_to_command() function."""

    @pytest.mark.parametrize("key,command", [
        ("p", InterruptCommand.PAUSE),
        ("s", InterruptCommand.SKIP),
        ("q", InterruptCommand.ABORT),
        ("?", InterruptCommand.ASK),
        ("v", InterruptCommand.PIVOT),
        ("i", InterruptCommand.STATUS),
        ("h", InterruptCommand.HELP),
    ])
    def test_hotkeys(self, key, command):
        assert key_to_command(key) == command

    def test_ctrl_c_aborts(self):
        assert key_to_command(CTRL_C) == InterruptCommand.ABORT

    def test_uppercase(self):
        assert key_to_command("P") == InterruptCommand.PAUSE

    def test_unknown_key(self):
        assert key_to_command("x") is None

    def test_help_lists_every_key(self):
        text = help_text()
        for key, (_, description) in HOTKEYS.items():
            assert f"  {key}  {description}" in text


class TestInterruptChannel:
    """Tests for InterruptChannel."""

    def test_drain_in_arrival_order(self):
        channel = InterruptChannel()
        channel.push(InterruptCommand.STATUS)
        channel.push(InterruptCommand.PAUSE)

        assert channel.has_pending()
        assert channel.drain() == [InterruptCommand.STATUS, InterruptCommand.PAUSE]
        assert channel.drain() == []
        assert not channel.has_pending()

    def test_should_stop_peeks(self):
        channel = InterruptChannel()
        channel.push(InterruptCommand.SKIP)

        assert channel.should_stop() is True
        assert channel.drain() == [InterruptCommand.SKIP]

    def test_informational_commands_do_not_stop(self):
        channel = InterruptChannel()
        channel.push(InterruptCommand.STATUS)
        channel.push(InterruptCommand.HELP)
        channel.push(InterruptCommand.ASK)
        assert channel.should_stop() is False


class TestHotkeyListener:
    """Tests for HotkeyListener."""

    def test_not_started_without_tty(self):
        listener = HotkeyListener(InterruptChannel(), stream=io.StringIO())
        assert listener.start() is False
        assert listener.active is False

    def test_suspend_and_resume_are_noops_when_inactive(self):
        listener = HotkeyListener(InterruptChannel(), stream=io.StringIO())
        listener.suspend()
        listener.resume()
        listener.stop()

    def test_reads_keys_until_eof(self):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, b"px" + CTRL_C.encode())
        os.close(write_fd)

        channel = InterruptChannel()
        with os.fdopen(read_fd) as stream:
            HotkeyListener(channel, stream=stream)._run()

        assert channel.drain() == [InterruptCommand.PAUSE, InterruptCommand.ABORT]
