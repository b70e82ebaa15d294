"""
Governance Module - Proposals, votes and the laws they enact

This module implements the voting resolution engine:
- Rule table: who proposes and votes on which law, for how long
- Threshold evaluator: early and final resolution of a tally
- Proposal lifecycle with at-most-once resolution
- Alliance handshake between two communities
- Expiration sweeper and law executor
"""

from polity.governance.models import (
    AllianceStatus,
    GovernanceRules,
    GovernanceType,
    LawType,
    PassingCondition,
    ProposalStatus,
    VoteChoice,
)

__all__ = [
    "AllianceStatus",
    "GovernanceRules",
    "GovernanceType",
    "LawType",
    "PassingCondition",
    "ProposalStatus",
    "VoteChoice",
]
