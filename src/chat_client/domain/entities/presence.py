from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class PresenceRecord:
    user_id: str
    online: bool
    last_seen: datetime | None
    live: bool = True  # False when derived from a REST snapshot
