"""
Notification sink protocol and user-facing failure descriptions.

The resilience layer tells the presentation layer what happened ("retrying
attempt 2", "failed after 4 attempts", "restored previous value") without
depending on any UI mechanism. Sinks are fire-and-forget: ``notify`` returns
nothing and its result is never consumed.

Design Principles:
- Protocol over inheritance: any object with ``notify(notification)`` works
- The core supplies attempt count, operation name and final error; the
  presentation layer decides how to render them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from careline.core.errors import ErrorCategory, categorize_error
from careline.core.logging import get_logger

logger = get_logger(__name__)


class NotificationVariant(str, Enum):
    """How prominently a notification should be shown."""

    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Notification:
    """A message for the presentation layer."""

    title: str
    description: str = ""
    variant: NotificationVariant = NotificationVariant.DEFAULT
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_error(self) -> bool:
        return self.variant == NotificationVariant.DESTRUCTIVE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "variant": self.variant.value,
            "created_at": self.created_at.isoformat(),
        }
        if self.metadata:
            result["metadata"] = self.metadata
        return result


@runtime_checkable
class Notifier(Protocol):
    """Protocol for notification sinks."""

    def notify(self, notification: Notification) -> None:
        """Deliver a notification. Must not raise."""
        ...


class NullNotifier:
    """Discards every notification."""

    def notify(self, notification: Notification) -> None:
        return None


class LoggingNotifier:
    """Writes notifications to the structured log."""

    def notify(self, notification: Notification) -> None:
        log = logger.warning if notification.is_error else logger.info
        log(
            "notification",
            title=notification.title,
            description=notification.description,
            **notification.metadata,
        )


class CollectingNotifier:
    """Keeps notifications in memory, newest last.

    Useful for UIs that poll and for tests.
    """

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    @property
    def titles(self) -> list[str]:
        return [n.title for n in self.notifications]

    def clear(self) -> None:
        self.notifications.clear()


def describe_failure(error: BaseException, attempts: int = 1) -> Notification:
    """Build the user-friendly notification for a final failure."""
    category = categorize_error(error)
    title = "Error"
    description = str(error)

    if category == ErrorCategory.NETWORK:
        title = "Connection Error"
        description = (
            f"Unable to connect after {attempts} attempts. Please check your internet connection."
            if attempts > 1
            else "Unable to connect to the server. Please check your internet connection."
        )
    elif category == ErrorCategory.AUTH:
        title = "Authentication Error"
        description = "Please log in to continue."
    elif category == ErrorCategory.VALIDATION:
        title = "Invalid Data"
        description = "Please check your input and try again."
    elif category == ErrorCategory.BUSINESS:
        title = "Processing Error"
        description = (
            f"Unable to process your request after {attempts} attempts. Please try again later."
            if attempts > 1
            else "Unable to process your request. Please try again."
        )

    return Notification(
        title=title,
        description=description,
        variant=NotificationVariant.DESTRUCTIVE,
        metadata={"category": category.value, "attempts": attempts},
    )


def plural(count: int, word: str) -> str:
    """``plural(1, "attempt")`` → ``"1 attempt"``; ``plural(3, ...)`` → ``"3 attempts"``."""
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


__all__ = [
    "NotificationVariant",
    "Notification",
    "Notifier",
    "NullNotifier",
    "LoggingNotifier",
    "CollectingNotifier",
    "describe_failure",
    "plural",
]
