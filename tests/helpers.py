"""
Test Helper Functions - Builders, fakes and assertions

Seeds communities with ranked members and records notifications so tests can
assert on what members were told.
"""

from typing import Any

from prometheus_client import REGISTRY

from polity.governance.models import Rank
from polity.polity import Polity


class RecordingNotifier:
    """Notifier that keeps every notification in memory"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def notify(self, kind: str, community_id: str, details: dict[str, Any]) -> None:
        self.sent.append((kind, community_id, details))

    def kinds_for(self, community_id: str, proposal_id: str | None = None) -> list[str]:
        return [
            kind
            for kind, cid, details in self.sent
            if cid == community_id
            and (proposal_id is None or details.get("proposal_id") == proposal_id)
        ]


class FailingNotifier:
    """Notifier whose delivery always fails"""

    def notify(self, kind: str, community_id: str, details: dict[str, Any]) -> None:
        raise ConnectionError("notification backend unavailable")


def seed_community(
    polity: Polity,
    name: str,
    governance_type: str = "monarchy",
    members: dict[str, int] | None = None,
    treasury_gold: float = 0.0,
) -> str:
    """
    Create a community with ranked members

    Args:
        polity: Engine to seed
        name: Community name
        governance_type: "monarchy" or "democracy"
        members: user_id → rank tier (defaults to a sovereign, a secretary
            and two members named after the community)
        treasury_gold: Starting treasury

    Returns:
        The community id
    """
    community = polity.create_community(name, governance_type, treasury_gold=treasury_gold)
    community_id = community["community_id"]
    if members is None:
        prefix = name.lower()
        members = {
            f"{prefix}-sovereign": Rank.SOVEREIGN,
            f"{prefix}-secretary": Rank.SECRETARY,
            f"{prefix}-member-1": Rank.MEMBER,
            f"{prefix}-member-2": Rank.MEMBER,
        }
    for user_id, rank in members.items():
        polity.add_member(community_id, user_id, rank)
    return community_id


def democracy(polity: Polity, name: str, voters: int, treasury_gold: float = 0.0) -> tuple[str, list[str]]:
    """
    Create a democracy with one sovereign, one secretary and plain members

    Returns:
        (community_id, all user ids with the sovereign first); every one of
        them can vote on all-member laws
    """
    prefix = name.lower()
    users = [f"{prefix}-{i}" for i in range(voters)]
    members = {users[0]: Rank.SOVEREIGN}
    if voters > 1:
        members[users[1]] = Rank.SECRETARY
    for user in users[2:]:
        members[user] = Rank.MEMBER
    return seed_community(polity, name, "democracy", members, treasury_gold), users


def metric_value(name: str, labels: dict[str, str] | None = None) -> float:
    """Current value of a Prometheus sample (0.0 if never observed)"""
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0
