"""
Governance Commands - What members ask the engine to do

Commands are validated against invariants and turned into events by the
handlers. The requester travels alongside as actor_id, not inside the command.
"""

from typing import Any

from pydantic import BaseModel, Field

from polity.governance.models import LawType, VoteChoice


class ProposeLaw(BaseModel):
    """
    Propose a law in a community

    Metadata requirements depend on the law type (e.g. tax_rate for
    WORK_TAX, target_community_id for CFC_ALLIANCE).
    """

    community_id: str = Field(..., min_length=1)
    law_type: LawType
    metadata: dict[str, Any] = Field(default_factory=dict)


class CastVote(BaseModel):
    """Vote yes or no on a pending proposal"""

    proposal_id: str = Field(..., min_length=1)
    vote: VoteChoice


class FastTrackProposal(BaseModel):
    """Sovereign override: pass a pending proposal before its window ends"""

    proposal_id: str = Field(..., min_length=1)
