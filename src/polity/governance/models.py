"""
Governance Domain Models - Law types, rule sets and evaluation results

Proposals and alliances themselves live as dicts in the projections (they are
folds of event streams); the models here are the vocabulary those folds and
the rule table are expressed in.
"""

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, Field


class LawType(str, Enum):
    """Category of governance action a proposal asks for"""

    DECLARE_WAR = "DECLARE_WAR"
    PROPOSE_HEIR = "PROPOSE_HEIR"
    CHANGE_GOVERNANCE = "CHANGE_GOVERNANCE"
    MESSAGE_OF_THE_DAY = "MESSAGE_OF_THE_DAY"
    WORK_TAX = "WORK_TAX"
    IMPORT_TARIFF = "IMPORT_TARIFF"
    CFC_ALLIANCE = "CFC_ALLIANCE"  # Combined Front Contract: mutual alliance
    ISSUE_CURRENCY = "ISSUE_CURRENCY"


class GovernanceType(str, Enum):
    """Organizational structure of a community; selects the rule set"""

    MONARCHY = "monarchy"
    DEMOCRACY = "democracy"


class PassingCondition(str, Enum):
    """Voting rule that decides how a proposal resolves"""

    SOVEREIGN_ONLY = "sovereign_only"
    MAJORITY_VOTE = "majority_vote"
    SUPERMAJORITY_VOTE = "supermajority_vote"
    UNANIMOUS = "unanimous"


class ProposalStatus(str, Enum):
    """
    Proposal lifecycle states

    PENDING → PASSED | REJECTED | EXPIRED. Terminal states are never left.
    """

    PENDING = "pending"
    PASSED = "passed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class VoteChoice(str, Enum):
    YES = "yes"
    NO = "no"


class ThresholdStatus(str, Enum):
    PASSED = "passed"
    REJECTED = "rejected"
    UNDECIDED = "undecided"


class AllianceStatus(str, Enum):
    """
    Alliance handshake states

    A passed alliance law opens a mirror proposal in the target community
    (PENDING_TARGET_APPROVAL); the alliance becomes ACTIVE once the target side
    passes it, or REJECTED when it fails there.
    """

    PENDING_TARGET_APPROVAL = "pending_target_approval"
    ACTIVE = "active"
    REJECTED = "rejected"


class Rank:
    """Conventional rank tiers inside a community"""

    SOVEREIGN = 0
    SECRETARY = 1
    MEMBER = 10


class GovernanceRules(BaseModel):
    """
    How one law type is decided under one governance type

    Attributes:
        passing_condition: Voting rule applied by the threshold evaluator
        propose_ranks: Rank tiers allowed to propose
        vote_access_ranks: Rank tiers allowed to vote (and counted as eligible)
        time_to_pass: Voting window; zero means the law passes at proposal time
        can_fast_track: Whether the sovereign may pass it before the window ends
        requires_metadata: Metadata fields the proposal must carry
        description: Human-readable summary shown to members
    """

    passing_condition: PassingCondition
    propose_ranks: frozenset[int]
    vote_access_ranks: frozenset[int]
    time_to_pass: timedelta
    can_fast_track: bool
    requires_metadata: tuple[str, ...] = ()
    description: str = ""

    model_config = {"frozen": True}

    @property
    def is_instant(self) -> bool:
        return self.time_to_pass == timedelta(0)


class ThresholdResult(BaseModel):
    """Outcome of evaluating a tally against a passing condition"""

    status: ThresholdStatus
    reason: str

    model_config = {"frozen": True}

    @property
    def is_decisive(self) -> bool:
        return self.status != ThresholdStatus.UNDECIDED


class VoteTally(BaseModel):
    """
    Votes on one proposal, split by whether they count toward its resolution

    Only members of the proposal's own community decide it; alliance votes
    cast from the target community are reported as counterpart votes.
    """

    yes_votes: int = 0
    no_votes: int = 0
    counterpart_yes_votes: int = 0
    counterpart_no_votes: int = 0
    sovereign_vote: VoteChoice | None = Field(
        default=None,
        description="Vote of the rank-0 member of the proposal's community, if cast",
    )

    @property
    def total(self) -> int:
        return self.yes_votes + self.no_votes
