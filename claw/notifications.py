"""
Desktop notifications for claw.

Uses notify-send (freedesktop compliant) for notifications.
Works with mako, dunst, GNOME, KDE notification daemons.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")

MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", "claw",
            title,
            message
        ], capture_output=True, text=True, timeout=5)

        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def _truncate(text: str) -> str:
    if len(text) > MAX_NOTIFICATION_LENGTH:
        return text[:MAX_NOTIFICATION_LENGTH] + "..."
    return text


def notify_complete(feature_id: str, stories_completed: int):
    notify(
        f"claw: {feature_id}",
        f"Session complete ({stories_completed} stories)",
        "low"
    )


def notify_blocked(feature_id: str, reason: str):
    """Notify that a session stopped on a blocker."""
    notify(
        f"claw: {feature_id}",
        f"Blocked: {_truncate(reason)}",
        "critical"
    )


def notify_needs_input(feature_id: str, question: str):
    notify(
        f"claw: {feature_id}",
        f"Waiting for input: {_truncate(question)}",
        "critical"
    )


def notify_stopped(feature_id: str, status: str, reason: str | None = None):
    """Notify that a session ended without completing (timeout, pause, error)."""
    message = f"Session {status}"
    if reason:
        message += f": {_truncate(reason)}"
    notify(f"claw: {feature_id}", message, "normal" if status == "paused" else "critical")
