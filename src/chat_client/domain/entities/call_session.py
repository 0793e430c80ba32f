from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import CallDirection, CallStatus


@dataclass(frozen=True, slots=True)
class CallSession:
    session_id: str
    peer_id: str
    direction: CallDirection
    status: CallStatus = CallStatus.RINGING
    conversation_id: str | None = None
    appointment_id: str | None = None
    peer_name: str = ""
