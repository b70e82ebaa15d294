"""
Governance Handlers - Command→Event transformation

Handlers are the decision-making layer. They:
1. Look up current state (projections, membership directory)
2. Validate invariants
3. Return the events to append

They never append themselves: the lifecycle appends, and the store's stream
versioning decides which of two racing writers wins.
"""

from typing import Any

from polity.community.ports import MembershipDirectory
from polity.governance.commands import CastVote, FastTrackProposal, ProposeLaw
from polity.governance.events import (
    PROPOSAL_STREAM,
    VOTE_STREAM,
    LawExecuted,
    LawExecutionFailed,
    ProposalCreated,
    ProposalResolved,
    VoteCast,
    vote_stream_id,
)
from polity.governance.invariants import (
    validate_alliance_capacity,
    validate_alliance_not_active,
    validate_authenticated,
    validate_can_fast_track,
    validate_can_propose,
    validate_can_vote,
    validate_cooldown,
    validate_heir_target,
    validate_member,
    validate_metadata,
    validate_no_pending_duplicate,
    validate_pending,
    validate_target_community,
)
from polity.governance.models import (
    AllianceStatus,
    GovernanceRules,
    GovernanceType,
    LawType,
    ProposalStatus,
    VoteTally,
)
from polity.governance.projections import AllianceRegistry, ProposalRegistry
from polity.governance.rules import get_rules, normalize_governance_type
from polity.kernel.errors import AlreadyVoted, CommunityNotFound, DuplicateProposal
from polity.kernel.events import Event, create_event
from polity.kernel.ids import generate_id
from polity.kernel.policy import GovernancePolicy
from polity.kernel.time import TimeProvider

TARGETED_LAW_TYPES = (LawType.DECLARE_WAR, LawType.CFC_ALLIANCE)


class GovernanceCommandHandlers:
    """
    Command handlers for proposals, votes and fast-tracks

    Also builds the system-generated proposal events (resolutions, execution
    audit, alliance mirrors) so every proposal event is shaped in one place.
    """

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: GovernancePolicy,
    ) -> None:
        """
        Initialize handlers with dependencies

        Args:
            time_provider: For timestamps (injectable for testing)
            policy: Governance parameters (cooldowns, caps, bounds)
        """
        self.time_provider = time_provider
        self.policy = policy

    def handle_propose_law(
        self,
        command: ProposeLaw,
        command_id: str,
        actor_id: str | None,
        directory: MembershipDirectory,
        proposal_registry: ProposalRegistry,
        alliance_registry: AllianceRegistry,
    ) -> list[Event]:
        """
        Handle ProposeLaw command

        Validates:
        - Requester is authenticated and a member with a proposing rank
        - Metadata is complete and in range; targets exist
        - Cooldown and one-pending-per-type limits
        - For alliances: not already allied, under the cap, no request pending

        Returns:
            [ProposalCreated], plus ProposalResolved for instant laws

        Raises:
            GovernanceError subclasses for each failed check
        """
        requester_id = validate_authenticated(actor_id)
        community_id = command.community_id
        law_type = command.law_type

        if not directory.community_exists(community_id):
            raise CommunityNotFound(community_id)

        governance_type = normalize_governance_type(directory.governance_type(community_id))
        rules = get_rules(law_type, governance_type)

        rank = validate_member(
            community_id, requester_id, directory.rank_of(community_id, requester_id)
        )
        validate_can_propose(rules, rank, law_type)

        metadata = validate_metadata(law_type, command.metadata, rules, self.policy)
        now = self.time_provider.now()

        if law_type in TARGETED_LAW_TYPES:
            target_id = str(metadata["target_community_id"])
            metadata["target_community_id"] = target_id
            validate_target_community(
                community_id, target_id, directory.community_exists(target_id)
            )

        if law_type == LawType.PROPOSE_HEIR:
            heir_id = str(metadata["target_user_id"])
            validate_heir_target(heir_id, directory.rank_of(community_id, heir_id))

        validate_cooldown(
            community_id,
            law_type,
            proposal_registry.last_proposed_at(community_id, law_type),
            now,
            self.policy,
        )
        validate_no_pending_duplicate(
            community_id,
            law_type,
            proposal_registry.pending_of_type(community_id, law_type),
            self.policy,
        )

        if law_type == LawType.CFC_ALLIANCE:
            target_id = metadata["target_community_id"]
            validate_alliance_not_active(
                community_id, target_id, alliance_registry.are_allied(community_id, target_id)
            )
            record = alliance_registry.get_by_pair(community_id, target_id)
            if (
                record is not None
                and record["status"] == AllianceStatus.PENDING_TARGET_APPROVAL.value
                and record["initiator_community_id"] == community_id
            ):
                raise DuplicateProposal(
                    community_id,
                    law_type.value,
                    f"An alliance request to {target_id} is already awaiting their approval",
                )
            validate_alliance_capacity(
                community_id, alliance_registry.count_active(community_id), self.policy
            )

        metadata["proposer_id"] = requester_id

        return self.build_proposal_events(
            community_id=community_id,
            law_type=law_type,
            governance_type=governance_type,
            rules=rules,
            metadata=metadata,
            proposer_id=requester_id,
            command_id=command_id,
            actor_id=actor_id,
        )

    def build_proposal_events(
        self,
        *,
        community_id: str,
        law_type: LawType,
        governance_type: GovernanceType,
        rules: GovernanceRules,
        metadata: dict[str, Any],
        proposer_id: str,
        command_id: str,
        actor_id: str | None,
        mirrored_from_proposal_id: str | None = None,
    ) -> list[Event]:
        """
        Build the events that open a proposal

        An instant law (zero window) is created and resolved in the same
        append, so resolved_at equals created_at and no vote can slip in.
        """
        now = self.time_provider.now()
        proposal_id = generate_id()

        created = create_event(
            event_id=generate_id(),
            stream_id=proposal_id,
            stream_type=PROPOSAL_STREAM,
            event_type="ProposalCreated",
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=ProposalCreated(
                proposal_id=proposal_id,
                community_id=community_id,
                law_type=law_type,
                proposer_id=proposer_id,
                governance_type=governance_type,
                metadata=metadata,
                created_at=now,
                expires_at=now + rules.time_to_pass,
                mirrored_from_proposal_id=mirrored_from_proposal_id,
            ).model_dump(mode="json"),
            version=1,
        )
        events = [created]

        if rules.is_instant:
            events.append(
                create_event(
                    event_id=generate_id(),
                    stream_id=proposal_id,
                    stream_type=PROPOSAL_STREAM,
                    event_type="ProposalResolved",
                    occurred_at=now,
                    command_id=command_id,
                    actor_id=actor_id,
                    payload=ProposalResolved(
                        proposal_id=proposal_id,
                        status=ProposalStatus.PASSED,
                        resolved_at=now,
                        resolution_notes="Instant law: passed when proposed",
                        trigger="instant",
                        yes_votes=0,
                        no_votes=0,
                    ).model_dump(mode="json"),
                    version=2,
                )
            )

        return events

    def handle_cast_vote(
        self,
        command: CastVote,
        command_id: str,
        actor_id: str | None,
        proposal: dict[str, Any],
        directory: MembershipDirectory,
    ) -> Event:
        """
        Handle CastVote command

        Membership is checked in the proposal's community; for alliance
        proposals a member of the target community may vote too. Such a vote
        is checked against the rules of the voter's own community and recorded
        as a counterpart vote, which does not count toward resolution.

        Raises:
            ProposalNotPending, NotAMember, PermissionDenied, AlreadyVoted
        """
        requester_id = validate_authenticated(actor_id)
        validate_pending(proposal)

        community_id = proposal["community_id"]
        voter_community_id = community_id
        rank = directory.rank_of(community_id, requester_id)
        governance_type = proposal["governance_type"]

        target_id = proposal.get("target_community_id")
        if rank is None and proposal["law_type"] == LawType.CFC_ALLIANCE.value and target_id:
            rank = directory.rank_of(target_id, requester_id)
            if rank is not None:
                voter_community_id = target_id
                governance_type = directory.governance_type(target_id)

        rank = validate_member(community_id, requester_id, rank)
        rules = get_rules(proposal["law_type"], governance_type)
        validate_can_vote(rules, rank)

        if requester_id in proposal["votes"]:
            raise AlreadyVoted(proposal["proposal_id"], requester_id)

        now = self.time_provider.now()
        return create_event(
            event_id=generate_id(),
            stream_id=vote_stream_id(proposal["proposal_id"], requester_id),
            stream_type=VOTE_STREAM,
            event_type="VoteCast",
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=VoteCast(
                proposal_id=proposal["proposal_id"],
                user_id=requester_id,
                vote=command.vote,
                voter_community_id=voter_community_id,
                rank_tier=rank,
                counts_toward_resolution=voter_community_id == community_id,
                cast_at=now,
            ).model_dump(mode="json"),
            version=1,
        )

    def handle_fast_track(
        self,
        command: FastTrackProposal,
        command_id: str,
        actor_id: str | None,
        proposal: dict[str, Any],
        directory: MembershipDirectory,
    ) -> Event:
        """
        Handle FastTrackProposal command

        Raises:
            ProposalNotPending, NotAMember, PermissionDenied
        """
        requester_id = validate_authenticated(actor_id)
        validate_pending(proposal)

        community_id = proposal["community_id"]
        rank = validate_member(
            community_id, requester_id, directory.rank_of(community_id, requester_id)
        )
        rules = get_rules(proposal["law_type"], proposal["governance_type"])
        validate_can_fast_track(rules, rank)

        return self.build_resolution(
            proposal,
            ProposalStatus.PASSED,
            notes="Fast-tracked by the sovereign",
            trigger="fast_track",
            command_id=command_id,
            actor_id=actor_id,
        )

    def build_resolution(
        self,
        proposal: dict[str, Any],
        status: ProposalStatus,
        *,
        notes: str,
        trigger: str,
        command_id: str,
        actor_id: str | None = None,
        tally: VoteTally | None = None,
    ) -> Event:
        """
        Build the ProposalResolved event for a proposal observed pending

        Its version is one past the observed version; appending it with that
        expected version is the compare-and-swap on "still pending".
        """
        now = self.time_provider.now()
        tally = tally or VoteTally(
            yes_votes=proposal.get("yes_votes", 0), no_votes=proposal.get("no_votes", 0)
        )
        return create_event(
            event_id=generate_id(),
            stream_id=proposal["proposal_id"],
            stream_type=PROPOSAL_STREAM,
            event_type="ProposalResolved",
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=ProposalResolved(
                proposal_id=proposal["proposal_id"],
                status=status,
                resolved_at=now,
                resolution_notes=notes,
                trigger=trigger,
                yes_votes=tally.yes_votes,
                no_votes=tally.no_votes,
            ).model_dump(mode="json"),
            version=proposal["version"] + 1,
        )

    def build_execution_record(
        self,
        proposal: dict[str, Any],
        *,
        version: int,
        command_id: str,
        details: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> Event:
        """Build LawExecuted, or LawExecutionFailed when an error is given"""
        now = self.time_provider.now()
        law_type = LawType(proposal["law_type"])

        if error is None:
            event_type = "LawExecuted"
            payload = LawExecuted(
                proposal_id=proposal["proposal_id"],
                law_type=law_type,
                executed_at=now,
                details=details or {},
            ).model_dump(mode="json")
        else:
            event_type = "LawExecutionFailed"
            payload = LawExecutionFailed(
                proposal_id=proposal["proposal_id"],
                law_type=law_type,
                failed_at=now,
                error_type=type(error).__name__,
                reason=str(error),
            ).model_dump(mode="json")

        return create_event(
            event_id=generate_id(),
            stream_id=proposal["proposal_id"],
            stream_type=PROPOSAL_STREAM,
            event_type=event_type,
            occurred_at=now,
            command_id=command_id,
            actor_id=None,
            payload=payload,
            version=version,
        )
