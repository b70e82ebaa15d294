"""
Governance Invariants - Checks every proposal, vote and fast-track must pass

Pure functions (no I/O): callers look state up and pass it in, the invariant
either returns quietly or raises the typed error the caller surfaces.
"""

import math
from datetime import datetime, timedelta
from typing import Any

from polity.governance.models import (
    GovernanceRules,
    GovernanceType,
    LawType,
    ProposalStatus,
    Rank,
)
from polity.governance.rules import can_propose, can_vote
from polity.kernel.errors import (
    AllianceAlreadyActive,
    AllianceLimitExceeded,
    DuplicateProposal,
    InvalidMetadata,
    NotAMember,
    NotAuthenticated,
    PermissionDenied,
    ProposalCooldownActive,
    ProposalNotPending,
    TargetNotFound,
)
from polity.kernel.policy import GovernancePolicy


# Requester checks


def validate_authenticated(requester_id: str | None) -> str:
    """Raises NotAuthenticated unless a non-empty requester id is given"""
    if not requester_id or not str(requester_id).strip():
        raise NotAuthenticated()
    return requester_id


def validate_member(community_id: str, user_id: str, rank_tier: int | None) -> int:
    """Raises NotAMember when the user holds no rank in the community"""
    if rank_tier is None:
        raise NotAMember(community_id, user_id)
    return rank_tier


def validate_can_propose(rules: GovernanceRules, rank_tier: int, law_type: LawType) -> None:
    if not can_propose(rules, rank_tier):
        raise PermissionDenied(
            f"Your rank cannot propose {law_type.value} in this community"
        )


def validate_can_vote(rules: GovernanceRules, rank_tier: int) -> None:
    if not can_vote(rules, rank_tier):
        raise PermissionDenied("Your rank is not allowed to vote on this law")


def validate_can_fast_track(rules: GovernanceRules, rank_tier: int | None) -> None:
    """
    Only the sovereign of the proposal's own community may fast-track, and only
    where the rule set allows it

    Raises:
        PermissionDenied: With a message naming which condition failed
    """
    if rank_tier != Rank.SOVEREIGN:
        raise PermissionDenied("Only the sovereign can fast-track proposals")
    if not rules.can_fast_track:
        raise PermissionDenied("This law cannot be fast-tracked")


def validate_pending(proposal: dict[str, Any]) -> None:
    if proposal["status"] != ProposalStatus.PENDING.value:
        raise ProposalNotPending(proposal["proposal_id"], proposal["status"])


# Metadata


def _require_number(law_type: LawType, metadata: dict[str, Any], field: str) -> float:
    value = metadata.get(field)
    if isinstance(value, bool):
        raise InvalidMetadata(law_type.value, f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidMetadata(law_type.value, f"{field} must be a number") from e
    if not math.isfinite(number):
        raise InvalidMetadata(law_type.value, f"{field} must be a finite number")
    return number


def validate_metadata(
    law_type: LawType,
    metadata: dict[str, Any] | None,
    rules: GovernanceRules,
    policy: GovernancePolicy,
) -> dict[str, Any]:
    """
    Check required fields are present and values are in range

    Runs at proposal time and again when the law executes.

    Returns:
        A copy of the metadata with numeric fields coerced to numbers

    Raises:
        InvalidMetadata: On a missing field or an out-of-range value
    """
    cleaned = dict(metadata or {})

    missing = [
        field
        for field in rules.requires_metadata
        if cleaned.get(field) is None or (isinstance(cleaned.get(field), str) and not cleaned[field].strip())
    ]
    if missing:
        raise InvalidMetadata(law_type.value, f"missing required field(s): {', '.join(missing)}")

    if law_type == LawType.WORK_TAX:
        rate = _require_number(law_type, cleaned, "tax_rate")
        if not 0 <= rate <= 1:
            raise InvalidMetadata(law_type.value, "tax_rate must be between 0 and 1")
        cleaned["tax_rate"] = rate

    elif law_type == LawType.IMPORT_TARIFF:
        rate = _require_number(law_type, cleaned, "tariff_rate")
        if not 0 <= rate <= 1:
            raise InvalidMetadata(law_type.value, "tariff_rate must be between 0 and 1")
        cleaned["tariff_rate"] = rate

    elif law_type == LawType.ISSUE_CURRENCY:
        gold = _require_number(law_type, cleaned, "gold_amount")
        rate = _require_number(law_type, cleaned, "conversion_rate")
        if not 0 < gold <= policy.max_currency_issuance:
            raise InvalidMetadata(
                law_type.value,
                f"gold_amount must be greater than 0 and at most {policy.max_currency_issuance}",
            )
        if rate <= 0:
            raise InvalidMetadata(law_type.value, "conversion_rate must be greater than 0")
        cleaned["gold_amount"] = gold
        cleaned["conversion_rate"] = rate

    elif law_type == LawType.CHANGE_GOVERNANCE:
        try:
            cleaned["new_governance_type"] = GovernanceType(
                str(cleaned["new_governance_type"]).strip().lower()
            ).value
        except ValueError as e:
            known = ", ".join(g.value for g in GovernanceType)
            raise InvalidMetadata(
                law_type.value, f"new_governance_type must be one of: {known}"
            ) from e

    return cleaned


# Targets


def validate_target_community(
    community_id: str,
    target_community_id: str,
    target_exists: bool,
) -> None:
    """
    Raises:
        TargetNotFound: If the target community does not exist or is the proposer
    """
    if target_community_id == community_id:
        raise TargetNotFound(target_community_id, kind="community other than your own")
    if not target_exists:
        raise TargetNotFound(target_community_id)


def validate_heir_target(target_user_id: str, target_rank: int | None) -> None:
    if target_rank is None:
        raise TargetNotFound(target_user_id, kind="member")


# Proposal creation limits


def validate_no_pending_duplicate(
    community_id: str,
    law_type: LawType,
    pending_of_type: list[dict[str, Any]],
    policy: GovernancePolicy,
) -> None:
    """At most one pending proposal per (community, law type), except coexisting types"""
    if law_type.value in policy.coexisting_law_types:
        return
    if pending_of_type:
        raise DuplicateProposal(community_id, law_type.value)


def validate_cooldown(
    community_id: str,
    law_type: LawType,
    last_proposed_at: datetime | None,
    now: datetime,
    policy: GovernancePolicy,
) -> None:
    """Recurring law types may be proposed once per cooldown window"""
    if law_type.value not in policy.cooldown_law_types or last_proposed_at is None:
        return
    window = timedelta(hours=policy.announcement_cooldown_hours)
    if now - last_proposed_at < window:
        raise ProposalCooldownActive(
            community_id, law_type.value, policy.announcement_cooldown_hours
        )


# Alliances


def validate_alliance_not_active(community_a: str, community_b: str, allied: bool) -> None:
    if allied:
        raise AllianceAlreadyActive(community_a, community_b)


def validate_alliance_capacity(
    community_id: str,
    active_alliances: int,
    policy: GovernancePolicy,
) -> None:
    """Raises AllianceLimitExceeded when one more alliance would exceed the cap"""
    if active_alliances >= policy.max_active_alliances:
        raise AllianceLimitExceeded(community_id, policy.max_active_alliances)
