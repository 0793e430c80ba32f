from __future__ import annotations

import logging
from typing import Protocol

from chat_client.application.dto.notice import Notice
from chat_client.domain.value_objects.enums import NoticeLevel

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, notice: Notice) -> None: ...


class LoggingNotifier:
    """Fallback notifier for headless use: notices go to the log."""

    def notify(self, notice: Notice) -> None:
        level = logging.WARNING if notice.level == NoticeLevel.ERROR else logging.INFO
        logger.log(level, "%s%s", notice.text, " (undo available)" if notice.undo else "")
