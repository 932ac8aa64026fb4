"""Notification collaborator: review reminders and sync messages."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Protocol for reminder scheduling and user-facing messages."""

    def schedule_reminder(self, topic_id: str, when: datetime) -> None:
        ...

    def cancel_reminder(self, topic_id: str) -> None:
        ...

    def show(self, title: str, body: str) -> None:
        ...


class LogNotifier:
    """Desktop default: keeps reminders in memory and writes messages to the log."""

    def __init__(self) -> None:
        self.reminders: dict[str, datetime] = {}
        self.messages: list[tuple[str, str]] = []

    def schedule_reminder(self, topic_id: str, when: datetime) -> None:
        self.reminders[topic_id] = when
        logger.info("Reminder for topic %s scheduled at %s", topic_id, when.isoformat())

    def cancel_reminder(self, topic_id: str) -> None:
        if self.reminders.pop(topic_id, None) is not None:
            logger.info("Reminder for topic %s cancelled", topic_id)

    def show(self, title: str, body: str) -> None:
        self.messages.append((title, body))
        if title.endswith("Error"):
            logger.warning("%s: %s", title, body)
        else:
            logger.info("%s: %s", title, body)
