from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TypingStarted:
    user_id: str
    conversation_id: str | None = None
