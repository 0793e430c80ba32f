from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class PresenceChanged:
    user_id: str
    online: bool
    last_seen: datetime | None = None
