"""
Community Ports - What the governance engine needs from the rest of the world

The engine owns proposals, votes and alliances. Membership, community state
and notification delivery belong to collaborators; these protocols are the
whole of what the engine asks of them.
"""

from collections.abc import Iterable
from typing import Any, Protocol


class MembershipDirectory(Protocol):
    """Read access to communities and member ranks"""

    def community_exists(self, community_id: str) -> bool: ...

    def governance_type(self, community_id: str) -> str | None: ...

    def rank_of(self, community_id: str, user_id: str) -> int | None:
        """Rank tier of the user in the community, or None if not a member"""
        ...

    def count_members_with_ranks(self, community_id: str, ranks: Iterable[int]) -> int:
        """Number of members whose rank tier is in ranks (the eligible voters)"""
        ...


class CommunityMutations(Protocol):
    """
    One call per law side effect

    Each call validates and commits on its own; the executor makes exactly one
    call per passed law.
    """

    def set_announcement(self, community_id: str, title: str, content: str) -> None: ...

    def create_conflict(self, initiator_community_id: str, target_community_id: str) -> str:
        """Record a declared conflict and return its id"""
        ...

    def designate_heir(self, community_id: str, user_id: str) -> None: ...

    def set_governance_type(self, community_id: str, governance_type: str) -> None: ...

    def set_work_tax_rate(self, community_id: str, rate: float) -> None: ...

    def set_import_tariff_rate(self, community_id: str, rate: float) -> None: ...

    def issue_currency(
        self, community_id: str, gold_amount: float, conversion_rate: float
    ) -> dict[str, Any]:
        """Burn treasury gold and mint currency; returns the amounts moved"""
        ...


class Notifier(Protocol):
    """
    Fire-and-forget notification sink

    kind is one of: proposed, passed, rejected, expired, execution_failed.
    """

    def notify(self, kind: str, community_id: str, details: dict[str, Any]) -> None: ...
