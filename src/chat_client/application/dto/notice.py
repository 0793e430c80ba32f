from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from chat_client.domain.value_objects.enums import NoticeLevel


@dataclass(frozen=True, slots=True)
class Notice:
    """User-facing toast; ``undo`` restores local state when present."""

    level: NoticeLevel
    text: str
    undo: Callable[[], None] | None = None
