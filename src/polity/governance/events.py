"""
Governance Events - Facts about proposals, votes and alliances

Stream layout:
- "proposal" streams, keyed by proposal id:
  v1 ProposalCreated, v2 ProposalResolved, v3 LawExecuted | LawExecutionFailed
- "vote" streams, keyed by "vote:<proposal_id>:<user_id>": v1 VoteCast
- "alliance" streams, keyed by the unordered pair "alliance:<a>:<b>":
  AllianceRequested, AllianceActivated, AllianceRejected, ...
- "alliance_roster" streams, keyed by "alliance_roster:<community_id>":
  one AllianceJoined per alliance the community is active in

Because a vote is a stream of its own, a second vote by the same user is a
version conflict in the store rather than an overwrite.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from polity.governance.models import (
    AllianceStatus,
    GovernanceType,
    LawType,
    ProposalStatus,
    VoteChoice,
)

PROPOSAL_STREAM = "proposal"
VOTE_STREAM = "vote"
ALLIANCE_STREAM = "alliance"
ROSTER_STREAM = "alliance_roster"


def vote_stream_id(proposal_id: str, user_id: str) -> str:
    return f"vote:{proposal_id}:{user_id}"


def vote_stream_prefix(proposal_id: str) -> str:
    return f"vote:{proposal_id}:"


def alliance_stream_id(community_a: str, community_b: str) -> str:
    """Stream key of an unordered community pair"""
    first, second = sorted((community_a, community_b))
    return f"alliance:{first}:{second}"


def roster_stream_id(community_id: str) -> str:
    return f"alliance_roster:{community_id}"


# Proposal Events


class ProposalCreated(BaseModel):
    """
    A law was proposed in a community

    governance_type is a snapshot: later governance changes do not alter the
    rules an open proposal is decided by.
    """

    proposal_id: str
    community_id: str
    law_type: LawType
    proposer_id: str
    governance_type: GovernanceType
    metadata: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    mirrored_from_proposal_id: str | None = None


class VoteCast(BaseModel):
    """
    A member voted on a proposal

    counts_toward_resolution is False for counterpart votes: alliance votes
    cast by members of the target community.
    """

    proposal_id: str
    user_id: str
    vote: VoteChoice
    voter_community_id: str
    rank_tier: int
    counts_toward_resolution: bool
    cast_at: datetime


class ProposalResolved(BaseModel):
    """
    A pending proposal reached a terminal status

    trigger: "vote" | "fast_track" | "instant" | "sweep" | "alliance"
    """

    proposal_id: str
    status: ProposalStatus
    resolved_at: datetime
    resolution_notes: str
    trigger: str
    yes_votes: int
    no_votes: int


class LawExecuted(BaseModel):
    """The side effect of a passed law was applied"""

    proposal_id: str
    law_type: LawType
    executed_at: datetime
    details: dict[str, Any]


class LawExecutionFailed(BaseModel):
    """
    A passed law could not be applied

    The proposal stays passed; this record is the audit trail of the failure.
    """

    proposal_id: str
    law_type: LawType
    failed_at: datetime
    error_type: str
    reason: str


# Alliance Events


class AllianceRequested(BaseModel):
    """
    A community passed an alliance law; the target community must now approve

    target_proposal_id is the mirror proposal opened in the target community.
    """

    alliance_id: str
    initiator_community_id: str
    target_community_id: str
    initiator_proposal_id: str
    target_proposal_id: str
    status: AllianceStatus = AllianceStatus.PENDING_TARGET_APPROVAL
    requested_at: datetime


class AllianceActivated(BaseModel):
    """Both communities approved; the alliance is in force"""

    alliance_id: str
    initiator_community_id: str
    target_community_id: str
    initiator_proposal_id: str
    target_proposal_id: str
    activated_at: datetime


class AllianceRejected(BaseModel):
    """A pending alliance failed: the other side voted it down, let it lapse or hit its cap"""

    alliance_id: str
    rejected_at: datetime
    reason: str
    proposal_id: str | None = None


class AllianceJoined(BaseModel):
    """
    A community took up one of its alliance slots

    Written to the community's roster stream in the same transaction as
    AllianceActivated, so two activations for one community cannot both be
    counted against the same free slot.
    """

    alliance_id: str
    community_id: str
    partner_community_id: str
    joined_at: datetime
