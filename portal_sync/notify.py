"""User-facing notification sinks."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol

from portal_common.logging import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, enum.Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str


class Notifier(Protocol):
    def notify(self, level: NotificationLevel, message: str) -> None: ...


class LogNotifier:
    """Default sink: notifications become structured log events."""

    def __init__(self, name: str = "portal") -> None:
        self._logger = get_logger(f"{__name__}.{name}")

    def notify(self, level: NotificationLevel, message: str) -> None:
        if level is NotificationLevel.ERROR:
            self._logger.error("user_notification", level=level.value, message=message)
        elif level is NotificationLevel.WARNING:
            self._logger.warning("user_notification", level=level.value, message=message)
        else:
            self._logger.info("user_notification", level=level.value, message=message)


class CollectingNotifier:
    """Keeps notifications in memory; used by the web layer and tests."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, level: NotificationLevel, message: str) -> None:
        self.notifications.append(Notification(level, message))

    def messages(self, level: NotificationLevel | None = None) -> list[str]:
        return [n.message for n in self.notifications if level is None or n.level is level]

    def clear(self) -> None:
        self.notifications.clear()
