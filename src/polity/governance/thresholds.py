"""
Threshold Evaluator - Decide a proposal from its tally

Pure functions: given the yes/no counts, the number of eligible voters and the
passing condition, answer passed / rejected / undecided. Used after every vote
for early resolution and by the sweeper in final mode.
"""

import math

from polity.governance.models import (
    PassingCondition,
    ThresholdResult,
    ThresholdStatus,
    VoteChoice,
)


def _passed(reason: str) -> ThresholdResult:
    return ThresholdResult(status=ThresholdStatus.PASSED, reason=reason)


def _rejected(reason: str) -> ThresholdResult:
    return ThresholdResult(status=ThresholdStatus.REJECTED, reason=reason)


def _undecided(reason: str) -> ThresholdResult:
    return ThresholdResult(status=ThresholdStatus.UNDECIDED, reason=reason)


def pass_threshold(eligible_voters: int, condition: PassingCondition) -> int:
    """
    Yes votes needed to pass under a counting condition

    majority: ceil(n/2); supermajority: ceil(2n/3); unanimous: n
    """
    if condition == PassingCondition.MAJORITY_VOTE:
        return math.ceil(eligible_voters / 2)
    if condition == PassingCondition.SUPERMAJORITY_VOTE:
        # Integer form avoids float rounding on exact multiples of 3
        return -(-eligible_voters * 2 // 3)
    if condition == PassingCondition.UNANIMOUS:
        return eligible_voters
    raise ValueError(f"{condition} has no vote-count threshold")


def evaluate_threshold(
    yes_votes: int,
    no_votes: int,
    eligible_voters: int,
    condition: PassingCondition,
    sovereign_vote: VoteChoice | None = None,
) -> ThresholdResult:
    """
    Evaluate a tally for early resolution

    Args:
        yes_votes: Yes votes cast by eligible members of the proposal's community
        no_votes: No votes cast by eligible members of the proposal's community
        eligible_voters: Members whose rank is in the rule's vote access ranks
        condition: Passing condition of the rule set
        sovereign_vote: Vote of the rank-0 member, if cast (sovereign_only only)

    Returns:
        ThresholdResult; UNDECIDED while the outcome can still go either way
    """
    if condition == PassingCondition.SOVEREIGN_ONLY:
        # Only the rank-0 member's own vote resolves; council votes are advisory
        if sovereign_vote == VoteChoice.YES:
            return _passed("Approved by the sovereign")
        if sovereign_vote == VoteChoice.NO:
            return _rejected("Rejected by the sovereign")
        return _undecided("Awaiting the sovereign's decision")

    if eligible_voters <= 0:
        return _undecided("No eligible voters")

    if condition == PassingCondition.UNANIMOUS:
        if no_votes > 0:
            return _rejected(f"Unanimity broken by {no_votes} no vote(s)")
        if yes_votes >= eligible_voters:
            return _passed(f"Unanimous: {yes_votes}/{eligible_voters} yes")
        return _undecided(f"{yes_votes}/{eligible_voters} yes, unanimity required")

    threshold = pass_threshold(eligible_voters, condition)
    if yes_votes >= threshold:
        return _passed(f"{yes_votes} yes of {eligible_voters} eligible (needed {threshold})")

    # Remaining voters can no longer lift yes to the threshold
    blocking = eligible_voters - threshold + 1
    if no_votes >= blocking:
        return _rejected(f"{no_votes} no of {eligible_voters} eligible (blocking at {blocking})")

    return _undecided(f"{yes_votes} yes, {no_votes} no of {eligible_voters} eligible")


def evaluate_final(
    yes_votes: int,
    no_votes: int,
    eligible_voters: int,
    condition: PassingCondition,
    sovereign_vote: VoteChoice | None = None,
) -> ThresholdResult:
    """
    Evaluate a tally at expiry

    Same rules as evaluate_threshold, except an undecided result is final:
    rejected if any vote was cast, otherwise expired (reported as UNDECIDED,
    which the sweeper records as expired).
    """
    result = evaluate_threshold(yes_votes, no_votes, eligible_voters, condition, sovereign_vote)
    if result.is_decisive:
        return result
    if yes_votes + no_votes > 0:
        return _rejected(f"Voting window closed without a decision ({result.reason})")
    return _undecided("Voting window closed with no votes cast")
