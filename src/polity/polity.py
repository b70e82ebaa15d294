"""
Polity - Main façade class

The primary interface for the governance engine. It wires the event store,
projections, lifecycle, alliance coordinator, law executor and sweeper
together and hides event sourcing behind plain method calls.

Example:
    >>> from polity import Polity
    >>> polity = Polity("governance.db")
    >>> realm = polity.create_community("Northreach")
    >>> polity.add_member(realm["community_id"], "queen", rank_tier=0)
    >>> polity.propose(realm["community_id"], "WORK_TAX", {"tax_rate": 0.1}, "queen")
    >>> polity.sweep_expired()  # from a scheduler
"""

import copy
from datetime import datetime
from pathlib import Path
from typing import Any

from polity.community.notifications import LogNotifier
from polity.community.ports import Notifier
from polity.community.store import SQLCommunityStore
from polity.governance.alliance import AllianceCoordinator
from polity.governance.commands import CastVote, FastTrackProposal, ProposeLaw
from polity.governance.executor import LawExecutor, build_law_handlers
from polity.governance.handlers import GovernanceCommandHandlers
from polity.governance.lifecycle import ProposalLifecycle, proposal_view
from polity.governance.models import GovernanceType, LawType, Rank, VoteChoice
from polity.governance.projections import GovernanceProjections
from polity.governance.sweeper import ExpirationSweeper
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.errors import CommunityNotFound
from polity.kernel.policy import GovernancePolicy
from polity.kernel.time import RealTimeProvider, TimeProvider


class Polity:
    """
    Polity main façade

    Provides a unified API for:
    - Community administration (communities, members and ranks)
    - Proposing, voting on and fast-tracking laws
    - Sweeping expired proposals
    - Querying proposals and alliances
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: GovernancePolicy | None = None,
        time_provider: TimeProvider | None = None,
        notifier: Notifier | None = None,
        community_store: SQLCommunityStore | None = None,
    ) -> None:
        """
        Initialize Polity

        Args:
            sqlite_path: Path to SQLite database (event log and community tables)
            policy: Governance policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            notifier: Notification sink (logs if None)
            community_store: Community store (SQLCommunityStore on sqlite_path if None)
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or GovernancePolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.notifier = notifier or LogNotifier()

        # Initialize infrastructure
        self.event_store = SQLiteEventStore(self.sqlite_path)
        self.communities = community_store or SQLCommunityStore(
            self.sqlite_path, time_provider=self.time_provider
        )
        self.projections = GovernanceProjections()
        self.handlers = GovernanceCommandHandlers(self.time_provider, self.policy)

        self.lifecycle = ProposalLifecycle(
            event_store=self.event_store,
            projections=self.projections,
            handlers=self.handlers,
            directory=self.communities,
            notifier=self.notifier,
            time_provider=self.time_provider,
            policy=self.policy,
        )
        self.alliances = AllianceCoordinator(
            event_store=self.event_store,
            projections=self.projections,
            lifecycle=self.lifecycle,
            directory=self.communities,
            time_provider=self.time_provider,
            policy=self.policy,
        )
        self.executor = LawExecutor(
            event_store=self.event_store,
            projections=self.projections,
            command_handlers=self.handlers,
            law_handlers=build_law_handlers(self.communities, self.policy, self.alliances),
            notifier=self.notifier,
        )
        self.lifecycle.attach(self.executor, self.alliances)
        self.sweeper = ExpirationSweeper(self.lifecycle, self.time_provider)

        # Rebuild projections from event store
        self.projections.rebuild(self.event_store)

    # Community administration

    def create_community(
        self,
        name: str,
        governance_type: str = GovernanceType.MONARCHY.value,
        *,
        community_id: str | None = None,
        treasury_gold: float = 0.0,
    ) -> dict[str, Any]:
        """Create a community (its governance type selects the rule set)"""
        return self.communities.create_community(
            name,
            governance_type,
            community_id=community_id,
            treasury_gold=treasury_gold,
        )

    def add_member(
        self, community_id: str, user_id: str, rank_tier: int = Rank.MEMBER
    ) -> dict[str, Any]:
        """Add a member with a rank tier (0 sovereign, 1 secretary, 10 member)"""
        return self.communities.add_member(community_id, user_id, rank_tier)

    def get_community(self, community_id: str) -> dict[str, Any]:
        """
        Raises:
            CommunityNotFound: If community doesn't exist
        """
        community = self.communities.get_community(community_id)
        if community is None:
            raise CommunityNotFound(community_id)
        community["members"] = self.communities.list_members(community_id)
        return community

    # Proposal operations

    def propose(
        self,
        community_id: str,
        law_type: str | LawType,
        metadata: dict[str, Any] | None,
        requester_id: str | None,
    ) -> dict[str, Any]:
        """
        Propose a law

        Laws with a zero voting window pass and execute before this returns.

        Args:
            community_id: Community the law applies to
            law_type: Law type (e.g. "WORK_TAX")
            metadata: Law-specific fields (e.g. {"tax_rate": 0.1})
            requester_id: Proposing member

        Returns:
            Proposal dict with proposal_id, status and tallies

        Raises:
            NotAuthenticated, CommunityNotFound, NotAMember, PermissionDenied,
            InvalidMetadata, TargetNotFound, DuplicateProposal,
            AllianceAlreadyActive, AllianceLimitExceeded
        """
        command = ProposeLaw(
            community_id=community_id,
            law_type=law_type,
            metadata=metadata or {},
        )
        return self.lifecycle.propose(command, requester_id)

    def vote(self, proposal_id: str, requester_id: str | None, vote: str | VoteChoice) -> dict[str, Any]:
        """
        Vote yes or no on a pending proposal

        Returns:
            {"success": True, "status": <status after the vote>}

        Raises:
            ProposalNotFound, ProposalNotPending, NotAMember, PermissionDenied,
            AlreadyVoted
        """
        choice = vote if isinstance(vote, VoteChoice) else VoteChoice(str(vote).strip().lower())
        command = CastVote(proposal_id=proposal_id, vote=choice)
        return self.lifecycle.vote(command, requester_id)

    def fast_track(self, proposal_id: str, requester_id: str | None) -> dict[str, Any]:
        """
        Pass a pending proposal now (sovereign only, where allowed)

        Raises:
            ProposalNotFound, ProposalNotPending, NotAMember, PermissionDenied
        """
        command = FastTrackProposal(proposal_id=proposal_id)
        return self.lifecycle.fast_track(command, requester_id)

    def sweep_expired(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Resolve every pending proposal whose window has closed

        Intended to be called on a schedule by an external scheduler.

        Returns:
            Dict with processed, passed, rejected, expired, skipped, failures
        """
        return self.sweeper.sweep(now).to_dict()

    # Queries

    def get_proposal(self, proposal_id: str) -> dict[str, Any]:
        """
        Get a proposal with its tallies

        Raises:
            ProposalNotFound: If proposal doesn't exist
        """
        return proposal_view(self.lifecycle.load(proposal_id))

    def list_active_proposals(self, community_id: str) -> list[dict[str, Any]]:
        """Pending proposals of a community plus alliance proposals targeting it, newest first"""
        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            return [
                proposal_view(p) for p in self.projections.proposals.list_active_for(community_id)
            ]

    def list_resolved_proposals(
        self,
        community_id: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> dict[str, Any]:
        """
        Resolved proposals of a community, most recently resolved first

        Args:
            community_id: Community
            page: 1-based page number (values below 1 read as 1)
            page_size: Items per page, clamped to [1, policy.max_page_size]

        Returns:
            Dict with items, total_count, page, page_size, has_more
        """
        page = max(1, page)
        page_size = self.policy.clamp_page_size(page_size)

        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            resolved = self.projections.proposals.list_resolved(community_id)
            start = (page - 1) * page_size
            items = [proposal_view(p) for p in resolved[start : start + page_size]]

        return {
            "items": items,
            "total_count": len(resolved),
            "page": page,
            "page_size": page_size,
            "has_more": start + len(items) < len(resolved),
        }

    def list_alliances(self, community_id: str, status: str | None = None) -> list[dict[str, Any]]:
        """Alliances a community takes part in, optionally filtered by status"""
        return self.alliances.list_alliances(community_id, status)

    def are_allied(self, community_a: str, community_b: str) -> bool:
        return self.alliances.are_allied(community_a, community_b)

    def stats(self) -> dict[str, Any]:
        """Counts used by the health endpoint and the CLI"""
        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            stats = {
                "total_events": self.event_store.count_events(),
                "total_streams": self.event_store.count_streams(),
                "pending_proposals": self.projections.proposals.count_pending(),
                "active_alliances": self.projections.alliances.count_active_total(),
            }
        return copy.deepcopy(stats)
