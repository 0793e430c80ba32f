from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import ProposalStatus


@dataclass(frozen=True, slots=True)
class ProposalUpdated:
    conversation_id: str
    proposal_id: str
    status: ProposalStatus | None = None
