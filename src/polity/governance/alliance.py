"""
Alliance Handshake Coordinator - Mutual approval across two communities

An alliance (CFC_ALLIANCE law) needs both communities to pass it. When A's
alliance law toward B passes:

1. If B asked first (a pending request initiated by B exists), A's pass is the
   approval: any other pending A→B proposal is settled as passed and the
   alliance activates.
2. Else if B has its own pending (or passed) alliance proposal toward A, that
   proposal is settled as passed and the alliance activates.
3. Otherwise a mirror proposal is opened inside B, under B's own rules and
   voting window, and the alliance waits in pending_target_approval.

If the other side rejects or lets its proposal expire, the pending alliance is
rejected. Every alliance write is appended at the observed version of the
pair's stream, so at most one alliance per pair can be active.
"""

import copy
from typing import Any

from polity.community.ports import MembershipDirectory
from polity.governance.events import (
    ALLIANCE_STREAM,
    ROSTER_STREAM,
    AllianceActivated,
    AllianceJoined,
    AllianceRejected,
    AllianceRequested,
    alliance_stream_id,
    roster_stream_id,
)
from polity.governance.invariants import (
    validate_alliance_capacity,
    validate_alliance_not_active,
    validate_target_community,
)
from polity.governance.lifecycle import ProposalLifecycle
from polity.governance.models import AllianceStatus, LawType, ProposalStatus
from polity.governance.projections import GovernanceProjections
from polity.governance.rules import get_rules, normalize_governance_type
from polity.kernel.errors import AllianceLimitExceeded, LawExecutionError, StreamVersionConflict
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.events import create_event
from polity.kernel.ids import generate_id
from polity.kernel.logging import get_logger
from polity.kernel.policy import GovernancePolicy
from polity.kernel.time import TimeProvider

logger = get_logger(__name__)

PENDING = AllianceStatus.PENDING_TARGET_APPROVAL.value
ACTIVATION_ATTEMPTS = 3


class AllianceCoordinator:
    """Keeps alliance proposals on both sides and the alliance record consistent"""

    def __init__(
        self,
        event_store: SQLiteEventStore,
        projections: GovernanceProjections,
        lifecycle: ProposalLifecycle,
        directory: MembershipDirectory,
        time_provider: TimeProvider,
        policy: GovernancePolicy,
    ) -> None:
        self.event_store = event_store
        self.projections = projections
        self.lifecycle = lifecycle
        self.directory = directory
        self.time_provider = time_provider
        self.policy = policy

    # Queries

    def list_alliances(self, community_id: str, status: str | None = None) -> list[dict[str, Any]]:
        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            return copy.deepcopy(self.projections.alliances.list_for(community_id, status))

    def are_allied(self, community_a: str, community_b: str) -> bool:
        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            return self.projections.alliances.are_allied(community_a, community_b)

    # Handshake

    def on_alliance_passed(self, proposal: dict[str, Any]) -> dict[str, Any]:
        """
        Act on a passed alliance proposal

        Returns:
            Details of the resulting alliance state

        Raises:
            TargetNotFound, AllianceAlreadyActive, AllianceLimitExceeded,
            LawExecutionError
        """
        community_id = proposal["community_id"]
        target_id = proposal["target_community_id"]
        validate_target_community(
            community_id, target_id, self.directory.community_exists(target_id)
        )

        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            alliances = self.projections.alliances
            validate_alliance_not_active(
                community_id, target_id, alliances.are_allied(community_id, target_id)
            )

            record = alliances.get_by_pair(community_id, target_id)
            if record is not None and record["status"] == PENDING:
                if record["initiator_community_id"] == community_id:
                    # Already asked; the other side's mirror is still open
                    return self._details(record)
                self._settle_other_proposals(community_id, target_id, proposal)
                return self.activate(
                    alliance_id=record["alliance_id"],
                    initiator_community_id=target_id,
                    target_community_id=community_id,
                    initiator_proposal_id=record["initiator_proposal_id"],
                    target_proposal_id=proposal["proposal_id"],
                )

            reciprocal = self._claim_reciprocal(community_id, target_id, proposal)
            if reciprocal is not None:
                return self.activate(
                    alliance_id=generate_id(),
                    initiator_community_id=target_id,
                    target_community_id=community_id,
                    initiator_proposal_id=reciprocal["proposal_id"],
                    target_proposal_id=proposal["proposal_id"],
                )

            return self.request(proposal)

    def _settle_other_proposals(
        self, community_id: str, target_id: str, approving: dict[str, Any]
    ) -> None:
        """Pass any other pending proposal on the approving side, without executing it"""
        for other in self.projections.proposals.find_alliance_proposals(
            community_id, target_id, {ProposalStatus.PENDING.value}
        ):
            if other["proposal_id"] == approving["proposal_id"]:
                continue
            self.lifecycle.resolve(
                copy.deepcopy(other),
                ProposalStatus.PASSED,
                notes=f"Alliance approved through proposal {approving['proposal_id']}",
                trigger="alliance",
                execute=False,
            )

    def _claim_reciprocal(
        self, community_id: str, target_id: str, proposal: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Find the other side's own proposal toward us and settle it as passed"""
        candidates = self.projections.proposals.find_alliance_proposals(
            target_id,
            community_id,
            {ProposalStatus.PENDING.value, ProposalStatus.PASSED.value},
        )
        for candidate in candidates:
            candidate = copy.deepcopy(candidate)
            if candidate["status"] == ProposalStatus.PASSED.value:
                if candidate["execution_error"] is None:
                    return candidate
                continue
            won = self.lifecycle.resolve(
                candidate,
                ProposalStatus.PASSED,
                notes=f"Reciprocal alliance passed by proposal {proposal['proposal_id']}",
                trigger="alliance",
                execute=False,
            )
            if won or self.lifecycle.load(candidate["proposal_id"])["status"] == ProposalStatus.PASSED.value:
                return candidate
        return None

    def activate(
        self,
        *,
        alliance_id: str,
        initiator_community_id: str,
        target_community_id: str,
        initiator_proposal_id: str,
        target_proposal_id: str,
    ) -> dict[str, Any]:
        """
        Activate an alliance, checking the cap of both communities

        AllianceActivated is appended together with an AllianceJoined event on
        each community's roster stream, all at the versions the cap was checked
        against. If another engine filled a slot in between, the projections
        catch up and the cap is checked again.

        Raises:
            AllianceLimitExceeded: If either community is at its cap (a pending
                request for the pair is rejected first)
            LawExecutionError: If the pair's alliance state changed concurrently
        """
        alliances = self.projections.alliances
        pair = (initiator_community_id, target_community_id)
        conflict: StreamVersionConflict | None = None

        for _ in range(ACTIVATION_ATTEMPTS):
            self._check_capacity(pair, target_proposal_id)
            pair_version = alliances.stream_version(*pair)
            now = self.time_provider.now()
            pair_stream = alliance_stream_id(*pair)
            appends = [
                (
                    pair_stream,
                    pair_version,
                    [
                        create_event(
                            event_id=generate_id(),
                            stream_id=pair_stream,
                            stream_type=ALLIANCE_STREAM,
                            event_type="AllianceActivated",
                            occurred_at=now,
                            command_id=generate_id(),
                            payload=AllianceActivated(
                                alliance_id=alliance_id,
                                initiator_community_id=initiator_community_id,
                                target_community_id=target_community_id,
                                initiator_proposal_id=initiator_proposal_id,
                                target_proposal_id=target_proposal_id,
                                activated_at=now,
                            ).model_dump(mode="json"),
                            version=pair_version + 1,
                        )
                    ],
                )
            ]
            for community_id, partner_id in (pair, pair[::-1]):
                roster_stream = roster_stream_id(community_id)
                roster_version = alliances.roster_version(community_id)
                joined = create_event(
                    event_id=generate_id(),
                    stream_id=roster_stream,
                    stream_type=ROSTER_STREAM,
                    event_type="AllianceJoined",
                    occurred_at=now,
                    command_id=generate_id(),
                    payload=AllianceJoined(
                        alliance_id=alliance_id,
                        community_id=community_id,
                        partner_community_id=partner_id,
                        joined_at=now,
                    ).model_dump(mode="json"),
                    version=roster_version + 1,
                )
                appends.append((roster_stream, roster_version, [joined]))

            try:
                self.event_store.append_batch(appends)
            except StreamVersionConflict as e:
                self.projections.catch_up(self.event_store)
                if alliances.stream_version(*pair) != pair_version:
                    raise LawExecutionError(
                        target_proposal_id,
                        LawType.CFC_ALLIANCE.value,
                        "alliance state changed concurrently, retry the proposal",
                    ) from e
                logger.info(
                    "Alliance slot taken concurrently, checking cap again",
                    alliance_id=alliance_id,
                    stream_id=e.stream_id,
                )
                conflict = e
                continue

            self.projections.catch_up(self.event_store)
            logger.info(
                "Alliance activated",
                alliance_id=alliance_id,
                initiator_community_id=initiator_community_id,
                target_community_id=target_community_id,
            )
            return self._details(alliances.get_by_pair(*pair))

        raise LawExecutionError(
            target_proposal_id,
            LawType.CFC_ALLIANCE.value,
            "alliance rosters kept changing, retry the proposal",
        ) from conflict

    def _check_capacity(self, pair: tuple[str, str], proposal_id: str) -> None:
        alliances = self.projections.alliances
        for community_id in pair:
            try:
                validate_alliance_capacity(
                    community_id, alliances.count_active(community_id), self.policy
                )
            except AllianceLimitExceeded as e:
                record = alliances.get_by_pair(*pair)
                if record is not None and record["status"] == PENDING:
                    self._reject(record, str(e), proposal_id=proposal_id)
                raise

    def request(self, proposal: dict[str, Any]) -> dict[str, Any]:
        """Open a mirror proposal in the target community and record the pending alliance"""
        community_id = proposal["community_id"]
        target_id = proposal["target_community_id"]
        alliances = self.projections.alliances

        governance_type = normalize_governance_type(self.directory.governance_type(target_id))
        rules = get_rules(LawType.CFC_ALLIANCE, governance_type)
        mirror_events = self.lifecycle.handlers.build_proposal_events(
            community_id=target_id,
            law_type=LawType.CFC_ALLIANCE,
            governance_type=governance_type,
            rules=rules,
            metadata={
                "target_community_id": community_id,
                "mirrored_from_proposal_id": proposal["proposal_id"],
                "proposer_id": proposal["proposer_id"],
            },
            proposer_id=proposal["proposer_id"],
            command_id=generate_id(),
            actor_id=None,
            mirrored_from_proposal_id=proposal["proposal_id"],
        )
        mirror_id = mirror_events[0].stream_id

        stream_id = alliance_stream_id(community_id, target_id)
        expected_version = alliances.stream_version(community_id, target_id)
        now = self.time_provider.now()
        alliance_id = generate_id()
        event = create_event(
            event_id=generate_id(),
            stream_id=stream_id,
            stream_type=ALLIANCE_STREAM,
            event_type="AllianceRequested",
            occurred_at=now,
            command_id=generate_id(),
            payload=AllianceRequested(
                alliance_id=alliance_id,
                initiator_community_id=community_id,
                target_community_id=target_id,
                initiator_proposal_id=proposal["proposal_id"],
                target_proposal_id=mirror_id,
                requested_at=now,
            ).model_dump(mode="json"),
            version=expected_version + 1,
        )
        self._append(stream_id, expected_version, event, proposal["proposal_id"])
        self.lifecycle.open_proposal(mirror_events)

        logger.info(
            "Alliance requested",
            alliance_id=alliance_id,
            initiator_community_id=community_id,
            target_community_id=target_id,
            mirror_proposal_id=mirror_id,
        )
        return self._details(alliances.get_by_pair(community_id, target_id))

    def on_proposal_closed(self, proposal: dict[str, Any]) -> None:
        """Reject the pending alliance an alliance proposal was linked to"""
        target_id = proposal.get("target_community_id")
        if not target_id:
            return
        with self.projections.lock:
            self.projections.catch_up(self.event_store)
            record = self.projections.alliances.get_by_pair(proposal["community_id"], target_id)
            if record is None or record["status"] != PENDING:
                return
            if proposal["proposal_id"] not in (
                record["initiator_proposal_id"],
                record["target_proposal_id"],
            ):
                return
            self._reject(
                record,
                f"Alliance proposal {proposal['proposal_id']} was {proposal['status']}",
                proposal_id=proposal["proposal_id"],
            )

    def _reject(self, record: dict[str, Any], reason: str, proposal_id: str | None) -> None:
        now = self.time_provider.now()
        event = create_event(
            event_id=generate_id(),
            stream_id=record["pair_key"],
            stream_type=ALLIANCE_STREAM,
            event_type="AllianceRejected",
            occurred_at=now,
            command_id=generate_id(),
            payload=AllianceRejected(
                alliance_id=record["alliance_id"],
                rejected_at=now,
                reason=reason,
                proposal_id=proposal_id,
            ).model_dump(mode="json"),
            version=record["version"] + 1,
        )
        try:
            self.event_store.append(record["pair_key"], record["version"], [event])
        except StreamVersionConflict:
            logger.info("Alliance changed before rejection", alliance_id=record["alliance_id"])
        else:
            logger.info("Alliance rejected", alliance_id=record["alliance_id"], reason=reason)
        self.projections.catch_up(self.event_store)

    def _append(self, stream_id: str, expected_version: int, event, proposal_id: str) -> None:
        try:
            self.event_store.append(stream_id, expected_version, [event])
        except StreamVersionConflict as e:
            self.projections.catch_up(self.event_store)
            raise LawExecutionError(
                proposal_id,
                LawType.CFC_ALLIANCE.value,
                "alliance state changed concurrently, retry the proposal",
            ) from e
        self.projections.catch_up(self.event_store)

    @staticmethod
    def _details(record: dict[str, Any] | None) -> dict[str, Any]:
        if record is None:
            return {}
        return {
            "alliance_id": record["alliance_id"],
            "status": record["status"],
            "initiator_community_id": record["initiator_community_id"],
            "target_community_id": record["target_community_id"],
        }
