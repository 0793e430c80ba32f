from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.value_objects.enums import CallSignalType


@dataclass(frozen=True, slots=True)
class CallSignal:
    type: CallSignalType
    sender_id: str
    session_id: str
    sender_name: str = ""
    appointment_id: str | None = None
    sent_at: datetime | None = None
