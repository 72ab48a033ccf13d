"""
Operator interrupts.

A daemon thread reads single keystrokes from the terminal and pushes commands
into an InterruptChannel. The session loop drains the channel between stories
and between retry attempts; nothing here touches session state directly.

Hotkeys:
  p  pause            s  skip current story     q / Ctrl-C  abort
  ?  ask a question   v  pivot menu             i  status
  h  help
"""

import logging
import os
import queue
import select
import sys
import termios
import threading
import tty
from enum import Enum
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

CTRL_C = "\x03"
POLL_INTERVAL = 0.2  # seconds


class InterruptCommand(Enum):
    PAUSE = "pause"
    SKIP = "skip"
    ABORT = "abort"
    ASK = "ask"
    PIVOT = "pivot"
    STATUS = "status"
    HELP = "help"


HOTKEYS: dict[str, tuple[InterruptCommand, str]] = {
    "p": (InterruptCommand.PAUSE, "Pause execution"),
    "s": (InterruptCommand.SKIP, "Skip current story"),
    "q": (InterruptCommand.ABORT, "Abort session"),
    "?": (InterruptCommand.ASK, "Ask Claude a question"),
    "v": (InterruptCommand.PIVOT, "Open pivot menu"),
    "i": (InterruptCommand.STATUS, "Show status"),
    "h": (InterruptCommand.HELP, "Show help"),
}

# Commands that should cut a retry sequence short
STOPPING_COMMANDS = (
    InterruptCommand.PAUSE,
    InterruptCommand.SKIP,
    InterruptCommand.ABORT,
    InterruptCommand.PIVOT,
)


def key_to_command(key: str) -> Optional[InterruptCommand]:
    if key == CTRL_C:
        return InterruptCommand.ABORT
    entry = HOTKEYS.get(key.lower())
    return entry[0] if entry else None


def help_text() -> str:
    lines = ["Available hotkeys:"]
    for key in sorted(HOTKEYS):
        lines.append(f"  {key}  {HOTKEYS[key][1]}")
    return "\n".join(lines)


class InterruptChannel:
    """Thread-safe queue of operator commands."""

    def __init__(self):
        self._queue: queue.Queue[InterruptCommand] = queue.Queue()

    def push(self, command: InterruptCommand) -> None:
        logger.debug(f"Interrupt queued: {command.value}")
        self._queue.put(command)

    def drain(self) -> list[InterruptCommand]:
        """Remove and return every queued command in arrival order."""
        commands = []
        while True:
            try:
                commands.append(self._queue.get_nowait())
            except queue.Empty:
                return commands

    def has_pending(self) -> bool:
        return not self._queue.empty()

    def should_stop(self) -> bool:
        """True if a queued command needs the loop's attention (peek, no removal)."""
        with self._queue.mutex:
            return any(cmd in STOPPING_COMMANDS for cmd in self._queue.queue)


class HotkeyListener:
    """Reads keystrokes in cbreak mode on a daemon thread.

    Only active when `stream` is a TTY. suspend() restores the terminal for
    line-based prompts; resume() re-enters cbreak mode.
    """

    def __init__(self, channel: InterruptChannel, stream: TextIO | None = None):
        self.channel = channel
        self.stream = stream or sys.stdin
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._suspended = threading.Event()
        self._saved_settings = None

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start listening. Returns False when stdin is not a terminal."""
        if self.active:
            return True
        try:
            if not self.stream.isatty():
                return False
            fd = self.stream.fileno()
            self._saved_settings = termios.tcgetattr(fd)
            tty.setcbreak(fd)
        except (termios.error, OSError, ValueError) as e:
            logger.debug(f"Hotkeys unavailable: {e}")
            return False

        self._stop.clear()
        self._suspended.clear()
        self._thread = threading.Thread(target=self._run, name="claw-hotkeys", daemon=True)
        self._thread.start()
        return True

    def _run(self) -> None:
        fd = self.stream.fileno()
        while not self._stop.is_set():
            if self._suspended.is_set():
                self._stop.wait(POLL_INTERVAL)
                continue
            try:
                readable, _, _ = select.select([fd], [], [], POLL_INTERVAL)
                if not readable or self._suspended.is_set():
                    continue
                data = os.read(fd, 1)
            except (OSError, ValueError) as e:
                logger.debug(f"Hotkey listener stopped: {e}")
                return
            if not data:
                return
            command = key_to_command(data.decode(errors="ignore"))
            if command is not None:
                self.channel.push(command)

    def _restore(self) -> None:
        if self._saved_settings is None:
            return
        try:
            termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_settings)
        except (termios.error, OSError, ValueError) as e:
            logger.debug(f"Could not restore terminal settings: {e}")

    def suspend(self) -> None:
        """Hand the terminal back for an interactive prompt."""
        if not self.active:
            return
        self._suspended.set()
        self._restore()

    def resume(self) -> None:
        if not self.active:
            return
        try:
            tty.setcbreak(self.stream.fileno())
        except (termios.error, OSError, ValueError) as e:
            logger.debug(f"Could not re-enter cbreak mode: {e}")
        self._suspended.clear()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        self._restore()

    def __enter__(self) -> "HotkeyListener":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
