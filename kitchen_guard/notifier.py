"""Notification sinks for action outcomes."""

import logging
import shutil
import subprocess
import sys
from enum import Enum
from typing import Optional, Protocol


logger = logging.getLogger(__name__)

DEFAULT_TITLE = "test-kitchen"


class NotificationImage(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationSink(Protocol):
    def notify(self, message: str, title: str, image: NotificationImage) -> None:
        ...


class LogNotifier:
    """Writes notifications to a logger instead of the desktop."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def notify(self, message: str, title: str, image: NotificationImage) -> None:
        level = logging.WARNING if image is NotificationImage.FAILED else logging.INFO
        self.log.log(level, f"[{title}] [{image.value}] {message}")


class DesktopNotifier:
    """Shows desktop notifications via notify-send (Linux) or osascript (macOS).

    Falls back to a LogNotifier when neither tool is available. Delivery
    problems are logged and never raised.
    """

    _URGENCY = {
        NotificationImage.SUCCESS: "normal",
        NotificationImage.FAILED: "critical",
        NotificationImage.SKIPPED: "low",
    }

    def __init__(self, fallback: Optional[NotificationSink] = None):
        self.fallback = fallback or LogNotifier()
        self._notify_send = shutil.which("notify-send")
        self._osascript = shutil.which("osascript") if sys.platform == "darwin" else None

    @property
    def available(self) -> bool:
        return bool(self._notify_send or self._osascript)

    def build_command(self, message: str, title: str, image: NotificationImage) -> Optional[list[str]]:
        if self._notify_send:
            return [self._notify_send, f"--urgency={self._URGENCY[image]}", title, message]
        if self._osascript:
            script = f"display notification {_applescript_string(message)} with title {_applescript_string(title)}"
            return [self._osascript, "-e", script]
        return None

    def notify(self, message: str, title: str, image: NotificationImage) -> None:
        args = self.build_command(message, title, image)
        if args is None:
            self.fallback.notify(message, title, image)
            return

        try:
            subprocess.run(args, check=True, capture_output=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Desktop notification failed ({e}), logging instead")
            self.fallback.notify(message, title, image)


def _applescript_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
