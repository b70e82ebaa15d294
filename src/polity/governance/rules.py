"""
Governance Rule Table - Who proposes, who votes, how long, and how it passes

The table is an immutable mapping from (law type, governance type) to
GovernanceRules, built once at import and checked to cover every pair. A
missing pair is a configuration error raised at import, never a runtime
fallback to some default rule set.

Windows are written the way operators think about them ("24h", "2d") and
parsed when the table is built.
"""

import re
from collections.abc import Mapping
from datetime import timedelta
from types import MappingProxyType
from typing import Any

from polity.kernel.errors import RuleTableError
from polity.governance.models import (
    GovernanceRules,
    GovernanceType,
    LawType,
    PassingCondition,
    Rank,
)

DEFAULT_GOVERNANCE_TYPE = GovernanceType.MONARCHY

SOVEREIGN = frozenset({Rank.SOVEREIGN})
COUNCIL = frozenset({Rank.SOVEREIGN, Rank.SECRETARY})
ALL_MEMBERS = frozenset({Rank.SOVEREIGN, Rank.SECRETARY, Rank.MEMBER})

_DURATION_PATTERN = re.compile(r"^(\d+)([hdms])$")
_DURATION_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a window such as "24h", "2d", "30m" or "0h"

    Raises:
        ValueError: If the string is not <digits><unit>
    """
    match = _DURATION_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time format: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


# Per-law definitions. Metadata requirements belong to the law, the rest
# to the (law, governance) pair.
LAW_DEFINITIONS: dict[LawType, dict[str, Any]] = {
    LawType.DECLARE_WAR: {
        "label": "Declare War",
        "requires_metadata": ("target_community_id",),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": COUNCIL,
                "time_to_pass": "24h",
                "can_fast_track": True,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Only the sovereign can declare war. Secretaries provide counsel.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": ALL_MEMBERS,
                "vote": ALL_MEMBERS,
                "time_to_pass": "48h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.MAJORITY_VOTE,
                "description": "Any member can propose war. Majority vote decides.",
            },
        },
    },
    LawType.PROPOSE_HEIR: {
        "label": "Propose Heir",
        "requires_metadata": ("target_user_id",),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": COUNCIL,
                "time_to_pass": "12h",
                "can_fast_track": True,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Only the sovereign can choose their heir.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": COUNCIL,
                "vote": ALL_MEMBERS,
                "time_to_pass": "48h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.MAJORITY_VOTE,
                "description": "Leadership nominates a successor. Members confirm by majority.",
            },
        },
    },
    LawType.CHANGE_GOVERNANCE: {
        "label": "Change Governance Type",
        "requires_metadata": ("new_governance_type",),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": COUNCIL,
                "time_to_pass": "48h",
                "can_fast_track": True,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Sovereign must decree the shift. Secretaries counsel on the change.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": ALL_MEMBERS,
                "vote": ALL_MEMBERS,
                "time_to_pass": "72h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.SUPERMAJORITY_VOTE,
                "description": "Changing the constitution takes two thirds of the members.",
            },
        },
    },
    LawType.MESSAGE_OF_THE_DAY: {
        "label": "Broadcast Announcement",
        "requires_metadata": ("title", "content"),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": SOVEREIGN,
                "time_to_pass": "0h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Sovereign broadcasts instantly to the community banner.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": COUNCIL,
                "vote": COUNCIL,
                "time_to_pass": "0h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Leadership broadcasts instantly to the community banner.",
            },
        },
    },
    LawType.WORK_TAX: {
        "label": "Work Tax Rate",
        "requires_metadata": ("tax_rate",),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": SOVEREIGN,
                "time_to_pass": "0h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Sovereign sets the work tax rate. Takes effect immediately.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": COUNCIL,
                "vote": ALL_MEMBERS,
                "time_to_pass": "24h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.MAJORITY_VOTE,
                "description": "Members vote on the work tax rate.",
            },
        },
    },
    LawType.IMPORT_TARIFF: {
        "label": "Import Tariff",
        "requires_metadata": ("tariff_rate",),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": SOVEREIGN,
                "time_to_pass": "0h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Sovereign sets the import tariff. Takes effect immediately.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": COUNCIL,
                "vote": ALL_MEMBERS,
                "time_to_pass": "24h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.MAJORITY_VOTE,
                "description": "Members vote on the import tariff.",
            },
        },
    },
    LawType.CFC_ALLIANCE: {
        "label": "Combined Front Contract (Alliance)",
        "requires_metadata": ("target_community_id",),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": COUNCIL,
                "time_to_pass": "24h",
                "can_fast_track": True,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Sovereign proposes alliance. Target community must also approve.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": COUNCIL,
                "vote": ALL_MEMBERS,
                "time_to_pass": "48h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.MAJORITY_VOTE,
                "description": "Leadership proposes alliance. Members and the target community must approve.",
            },
        },
    },
    LawType.ISSUE_CURRENCY: {
        "label": "Issue Currency",
        "requires_metadata": ("gold_amount", "conversion_rate"),
        "rules": {
            GovernanceType.MONARCHY: {
                "propose": SOVEREIGN,
                "vote": SOVEREIGN,
                "time_to_pass": "0h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.SOVEREIGN_ONLY,
                "description": "Sovereign issues currency by burning treasury gold.",
            },
            GovernanceType.DEMOCRACY: {
                "propose": COUNCIL,
                "vote": ALL_MEMBERS,
                "time_to_pass": "48h",
                "can_fast_track": False,
                "passing_condition": PassingCondition.MAJORITY_VOTE,
                "description": "Leadership proposes currency issuance. All members vote.",
            },
        },
    },
}


def build_rule_table(
    definitions: Mapping[LawType, Mapping[str, Any]],
) -> Mapping[tuple[LawType, GovernanceType], GovernanceRules]:
    """
    Build the immutable rule table and check it is exhaustive

    Raises:
        RuleTableError: If any (law type, governance type) pair is undefined
    """
    table: dict[tuple[LawType, GovernanceType], GovernanceRules] = {}
    for law_type in LawType:
        definition = definitions.get(law_type)
        for governance_type in GovernanceType:
            entry = definition["rules"].get(governance_type) if definition else None
            if entry is None:
                raise RuleTableError(law_type.value, governance_type.value)
            table[(law_type, governance_type)] = GovernanceRules(
                passing_condition=entry["passing_condition"],
                propose_ranks=entry["propose"],
                vote_access_ranks=entry["vote"],
                time_to_pass=parse_duration(entry["time_to_pass"]),
                can_fast_track=entry["can_fast_track"],
                requires_metadata=tuple(definition.get("requires_metadata", ())),
                description=entry.get("description", ""),
            )
    return MappingProxyType(table)


RULE_TABLE = build_rule_table(LAW_DEFINITIONS)


def normalize_governance_type(governance_type: str | GovernanceType | None) -> GovernanceType:
    """
    Normalize a stored governance type ("Monarchy", None, ...) to the enum

    Raises:
        ValueError: If the value names no known governance type
    """
    if governance_type is None or governance_type == "":
        return DEFAULT_GOVERNANCE_TYPE
    if isinstance(governance_type, GovernanceType):
        return governance_type
    return GovernanceType(str(governance_type).strip().lower())


def get_rules(
    law_type: LawType | str,
    governance_type: GovernanceType | str | None,
) -> GovernanceRules:
    """
    Look up the rules for a law under a governance type

    Raises:
        RuleTableError: If the pair is unknown (unknown law or governance type)
    """
    try:
        key = (LawType(law_type), normalize_governance_type(governance_type))
    except ValueError as e:
        raise RuleTableError(str(law_type), str(governance_type)) from e
    return RULE_TABLE[key]


def law_label(law_type: LawType | str) -> str:
    return LAW_DEFINITIONS[LawType(law_type)]["label"]


def can_propose(rules: GovernanceRules, rank_tier: int | None) -> bool:
    return rank_tier is not None and rank_tier in rules.propose_ranks


def can_vote(rules: GovernanceRules, rank_tier: int | None) -> bool:
    return rank_tier is not None and rank_tier in rules.vote_access_ranks
