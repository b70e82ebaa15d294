"""
Proposal Lifecycle - Propose, vote, fast-track and resolve

Owns every status transition of a proposal:

    pending ──vote / fast-track / instant / sweep / alliance──> passed
    pending ──vote / sweep──> rejected
    pending ──sweep──> expired

A transition is a ProposalResolved event appended at the version the proposal
was observed pending at. If another unit of work got there first the append
fails with StreamVersionConflict, this side catches up and stands down, and
the law is never executed twice.
"""

import copy
from typing import TYPE_CHECKING, Any

from polity.community.ports import MembershipDirectory, Notifier
from polity.governance.commands import CastVote, FastTrackProposal, ProposeLaw
from polity.governance.events import VOTE_STREAM, vote_stream_prefix
from polity.governance.handlers import GovernanceCommandHandlers
from polity.governance.models import (
    LawType,
    ProposalStatus,
    Rank,
    ThresholdStatus,
    VoteChoice,
    VoteTally,
)
from polity.governance.projections import GovernanceProjections
from polity.governance.rules import get_rules
from polity.governance.thresholds import evaluate_threshold
from polity.kernel.errors import AlreadyVoted, ProposalNotFound, ProposalNotPending, StreamVersionConflict
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.events import Event
from polity.kernel.ids import generate_id
from polity.kernel.logging import LogOperation, get_logger
from polity.kernel.metrics import (
    proposals_created_total,
    proposals_resolved_total,
    resolution_races_lost_total,
    votes_cast_total,
)
from polity.kernel.policy import GovernancePolicy
from polity.kernel.time import TimeProvider

if TYPE_CHECKING:
    from polity.governance.alliance import AllianceCoordinator
    from polity.governance.executor import LawExecutor

logger = get_logger(__name__)

_HIDDEN_FIELDS = ("votes", "version")


def proposal_view(proposal: dict[str, Any]) -> dict[str, Any]:
    """Copy of a proposal record as returned to callers (no per-user ballots)"""
    view = {k: copy.deepcopy(v) for k, v in proposal.items() if k not in _HIDDEN_FIELDS}
    view["total_votes"] = proposal["yes_votes"] + proposal["no_votes"]
    return view


class ProposalLifecycle:
    """
    State machine for proposals

    Wired after construction to the law executor and alliance coordinator,
    which call back into resolve() and open_proposal().
    """

    def __init__(
        self,
        event_store: SQLiteEventStore,
        projections: GovernanceProjections,
        handlers: GovernanceCommandHandlers,
        directory: MembershipDirectory,
        notifier: Notifier,
        time_provider: TimeProvider,
        policy: GovernancePolicy,
    ) -> None:
        self.event_store = event_store
        self.projections = projections
        self.handlers = handlers
        self.directory = directory
        self.notifier = notifier
        self.time_provider = time_provider
        self.policy = policy
        self.executor: "LawExecutor | None" = None
        self.alliances: "AllianceCoordinator | None" = None

    def attach(self, executor: "LawExecutor", alliances: "AllianceCoordinator") -> None:
        self.executor = executor
        self.alliances = alliances

    # Reads

    def load(self, proposal_id: str) -> dict[str, Any]:
        """
        Catch up and return a private copy of the proposal

        Raises:
            ProposalNotFound: If no such proposal exists
        """
        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            proposal = self.projections.proposals.get(proposal_id)
            if proposal is None:
                raise ProposalNotFound(proposal_id)
            return copy.deepcopy(proposal)

    def tally(self, proposal: dict[str, Any]) -> VoteTally:
        """
        Count votes straight from the vote streams of this proposal

        Only votes by members of the proposal's own community count toward
        resolution; the sovereign vote is the one cast at rank 0 there. Votes
        that reached the log after the proposal was resolved are ignored.
        """
        tally = VoteTally()
        seen: set[str] = set()
        cutoff = self._resolution_position(proposal["proposal_id"])
        events = self.event_store.load_streams_with_prefix(
            VOTE_STREAM, vote_stream_prefix(proposal["proposal_id"])
        )
        for event in events:
            payload = event.payload
            if event.event_type != "VoteCast" or payload["user_id"] in seen:
                continue
            if cutoff is not None and event.position > cutoff:
                continue
            seen.add(payload["user_id"])
            is_yes = payload["vote"] == VoteChoice.YES.value

            if payload.get("counts_toward_resolution", True):
                if is_yes:
                    tally.yes_votes += 1
                else:
                    tally.no_votes += 1
                if payload.get("rank_tier") == Rank.SOVEREIGN:
                    tally.sovereign_vote = VoteChoice(payload["vote"])
            elif is_yes:
                tally.counterpart_yes_votes += 1
            else:
                tally.counterpart_no_votes += 1
        return tally

    def _resolution_position(self, proposal_id: str) -> int | None:
        for event in self.event_store.load_stream(proposal_id):
            if event.event_type == "ProposalResolved":
                return event.position
        return None

    def eligible_voters(self, proposal: dict[str, Any]) -> int:
        rules = get_rules(proposal["law_type"], proposal["governance_type"])
        return self.directory.count_members_with_ranks(
            proposal["community_id"], rules.vote_access_ranks
        )

    # Commands

    def propose(self, command: ProposeLaw, actor_id: str | None) -> dict[str, Any]:
        """
        Create a proposal; instant laws pass and execute before this returns

        Raises:
            GovernanceError subclasses from validation
        """
        with LogOperation(
            logger,
            "propose",
            community_id=command.community_id,
            law_type=command.law_type.value,
            requester_id=actor_id,
        ) as op:
            with self.projections.lock:
                self.projections.catch_up(self.event_store)
                events = self.handlers.handle_propose_law(
                    command,
                    generate_id(),
                    actor_id,
                    self.directory,
                    self.projections.proposals,
                    self.projections.alliances,
                )
                proposal = self.open_proposal(events)
            op.bind(proposal_id=proposal["proposal_id"], status=proposal["status"])
            return proposal_view(proposal)

    def open_proposal(self, events: list[Event]) -> dict[str, Any]:
        """
        Append the events of a new proposal and run what follows from them

        Shared by member proposals and alliance mirror proposals.
        """
        proposal_id = events[0].stream_id
        self.event_store.append(proposal_id, 0, events)
        proposal = self.load(proposal_id)

        proposals_created_total.labels(law_type=proposal["law_type"]).inc()
        logger.info(
            "Proposal created",
            proposal_id=proposal_id,
            community_id=proposal["community_id"],
            law_type=proposal["law_type"],
            expires_at=proposal["expires_at"].isoformat(),
            mirrored_from=proposal["mirrored_from_proposal_id"],
        )
        self.notify("proposed", proposal)

        if proposal["status"] != ProposalStatus.PENDING.value:
            proposals_resolved_total.labels(
                law_type=proposal["law_type"], status=proposal["status"], trigger="instant"
            ).inc()
            self.after_resolution(proposal)
            proposal = self.load(proposal_id)
        return proposal

    def vote(self, command: CastVote, actor_id: str | None) -> dict[str, Any]:
        """
        Record a vote and resolve the proposal if the tally is now decisive

        Returns:
            {"success": True, "status": <proposal status after the vote>}

        Raises:
            ProposalNotFound, ProposalNotPending, NotAMember, PermissionDenied,
            AlreadyVoted
        """
        with LogOperation(
            logger,
            "vote",
            proposal_id=command.proposal_id,
            vote=command.vote.value,
            requester_id=actor_id,
        ) as op:
            proposal = self.load(command.proposal_id)
            event = self.handlers.handle_cast_vote(
                command, generate_id(), actor_id, proposal, self.directory
            )
            user_id = event.payload["user_id"]
            try:
                self.event_store.append(event.stream_id, 0, [event])
            except StreamVersionConflict as e:
                raise AlreadyVoted(command.proposal_id, user_id) from e

            # Resolved by someone else between our check and our append
            current = self.load(command.proposal_id)
            if user_id not in current["votes"]:
                logger.info(
                    "Vote arrived after resolution",
                    proposal_id=command.proposal_id,
                    status=current["status"],
                )
                raise ProposalNotPending(command.proposal_id, current["status"])

            votes_cast_total.labels(law_type=proposal["law_type"], vote=command.vote.value).inc()

            status = self.evaluate(command.proposal_id, trigger="vote")
            op.bind(status=status)
            return {"success": True, "status": status}

    def fast_track(self, command: FastTrackProposal, actor_id: str | None) -> dict[str, Any]:
        """
        Pass a pending proposal on the sovereign's word

        Raises:
            ProposalNotFound, ProposalNotPending, NotAMember, PermissionDenied
        """
        with LogOperation(
            logger, "fast_track", proposal_id=command.proposal_id, requester_id=actor_id
        ):
            proposal = self.load(command.proposal_id)
            proposal.update(self.tally(proposal).model_dump(include={"yes_votes", "no_votes"}))
            event = self.handlers.handle_fast_track(
                command, generate_id(), actor_id, proposal, self.directory
            )
            if not self.commit_resolution(proposal, event, trigger="fast_track"):
                current = self.load(command.proposal_id)
                raise ProposalNotPending(command.proposal_id, current["status"])
            return {"success": True, "status": ProposalStatus.PASSED.value}

    # Resolution

    def evaluate(self, proposal_id: str, *, trigger: str) -> str:
        """
        Run the threshold evaluator and commit a decisive outcome

        Returns:
            The proposal status after evaluation
        """
        proposal = self.load(proposal_id)
        if proposal["status"] != ProposalStatus.PENDING.value:
            return proposal["status"]

        tally = self.tally(proposal)
        eligible = self.eligible_voters(proposal)
        rules = get_rules(proposal["law_type"], proposal["governance_type"])
        result = evaluate_threshold(
            tally.yes_votes,
            tally.no_votes,
            eligible,
            rules.passing_condition,
            tally.sovereign_vote,
        )

        if result.status == ThresholdStatus.PASSED:
            status = ProposalStatus.PASSED
        elif result.status == ThresholdStatus.REJECTED:
            status = ProposalStatus.REJECTED
        else:
            logger.debug(
                "Proposal undecided",
                proposal_id=proposal_id,
                yes_votes=tally.yes_votes,
                no_votes=tally.no_votes,
                eligible_voters=eligible,
            )
            return ProposalStatus.PENDING.value

        self.resolve(proposal, status, notes=result.reason, trigger=trigger, tally=tally)
        return self.load(proposal_id)["status"]

    def resolve(
        self,
        proposal: dict[str, Any],
        status: ProposalStatus,
        *,
        notes: str,
        trigger: str,
        tally: VoteTally | None = None,
        execute: bool = True,
    ) -> bool:
        """
        Move a proposal observed pending to a terminal status

        Args:
            proposal: Proposal as observed pending (its version is the guard)
            status: Terminal status to record
            notes: Resolution notes
            trigger: What caused the resolution (vote, sweep, alliance, ...)
            tally: Fresh vote counts to record with the resolution
            execute: Run the law on pass (False when the alliance coordinator
                settles a reciprocal proposal it already acted on)

        Returns:
            True if this call resolved the proposal, False if it lost the race
        """
        event = self.handlers.build_resolution(
            proposal,
            status,
            notes=notes,
            trigger=trigger,
            command_id=generate_id(),
            tally=tally,
        )
        return self.commit_resolution(proposal, event, trigger=trigger, execute=execute)

    def commit_resolution(
        self,
        proposal: dict[str, Any],
        event: Event,
        *,
        trigger: str,
        execute: bool = True,
    ) -> bool:
        """Append a ProposalResolved event guarded by the observed version"""
        proposal_id = proposal["proposal_id"]
        try:
            self.event_store.append(proposal_id, proposal["version"], [event])
        except StreamVersionConflict:
            resolution_races_lost_total.labels(law_type=proposal["law_type"]).inc()
            logger.info(
                "Proposal already resolved elsewhere",
                proposal_id=proposal_id,
                trigger=trigger,
            )
            self.projections.catch_up(self.event_store)
            return False

        status = event.payload["status"]
        proposals_resolved_total.labels(
            law_type=proposal["law_type"], status=status, trigger=trigger
        ).inc()
        logger.info(
            "Proposal resolved",
            proposal_id=proposal_id,
            law_type=proposal["law_type"],
            status=status,
            trigger=trigger,
            notes=event.payload["resolution_notes"],
        )

        self.after_resolution(self.load(proposal_id), execute=execute)
        return True

    def after_resolution(self, proposal: dict[str, Any], execute: bool = True) -> None:
        """Notify, then execute a passed law or release a failed alliance"""
        self.notify(proposal["status"], proposal)

        if proposal["status"] == ProposalStatus.PASSED.value:
            if execute and self.executor is not None:
                self.executor.execute(proposal)
        elif proposal["law_type"] == LawType.CFC_ALLIANCE.value and self.alliances is not None:
            self.alliances.on_proposal_closed(proposal)

    def notify(self, kind: str, proposal: dict[str, Any], **details: Any) -> None:
        """Fire-and-forget notification; failures are logged, never raised"""
        community_ids = [proposal["community_id"]]
        if (
            kind == "proposed"
            and proposal["law_type"] == LawType.CFC_ALLIANCE.value
            and proposal.get("target_community_id")
            and proposal.get("mirrored_from_proposal_id") is None
        ):
            # Target community sees incoming alliance proposals too
            community_ids.append(proposal["target_community_id"])

        payload = {
            "proposal_id": proposal["proposal_id"],
            "law_type": proposal["law_type"],
            "status": proposal["status"],
            "resolution_notes": proposal.get("resolution_notes"),
            **details,
        }
        for community_id in community_ids:
            try:
                self.notifier.notify(kind, community_id, payload)
            except Exception as e:
                logger.warning(
                    "Notification failed",
                    kind=kind,
                    community_id=community_id,
                    proposal_id=proposal["proposal_id"],
                    error=str(e),
                )
