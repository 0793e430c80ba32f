from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Participant:
    id: str
    first_name: str | None = None
    last_name: str | None = None
    profile_image: str | None = None
    last_online: datetime | None = None
    is_professional: bool = False

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Unknown User"
