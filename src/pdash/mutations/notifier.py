"""User-facing notices for mutation outcomes."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

logger = structlog.get_logger()


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Bounded buffer of notices waiting to be shown to the user.

    Oldest notices are dropped once ``max_items`` is reached.
    """

    def __init__(self, max_items: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=max_items)

    def success(self, message: str) -> Notice:
        return self._push(NoticeLevel.SUCCESS, message)

    def error(self, message: str) -> Notice:
        return self._push(NoticeLevel.ERROR, message)

    @property
    def pending(self) -> list[Notice]:
        return list(self._notices)

    def drain(self) -> list[Notice]:
        """Return and clear all pending notices."""
        notices = list(self._notices)
        self._notices.clear()
        return notices

    def _push(self, level: NoticeLevel, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self._notices.append(notice)
        logger.debug("notice_queued", level=level.value, message=message)
        return notice
