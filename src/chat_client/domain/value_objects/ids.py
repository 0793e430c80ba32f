from __future__ import annotations

PENDING_ID_PREFIX = "pending-"


def is_pending_id(message_id: str) -> bool:
    """Placeholder ids are local to an optimistic send and never reach the server."""
    return message_id.startswith(PENDING_ID_PREFIX)
