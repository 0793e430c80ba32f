from __future__ import annotations

from typing import Protocol

from chat_client.domain.value_objects.enums import CallSignalType


class ChannelTransport(Protocol):
    """One realtime connection at a time; ``open`` may be called again after a drop.

    Failures are reported as ChannelConnectionError; ``receive_text`` returns
    None when the peer closed the connection.
    """

    async def open(self, token: str) -> None: ...

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str | None: ...

    async def close(self) -> None: ...


class CallSignalSender(Protocol):
    async def send_call_signal(
        self,
        target_user_id: str,
        session_id: str,
        signal_type: CallSignalType,
        *,
        appointment_id: str | None = None,
    ) -> bool: ...
