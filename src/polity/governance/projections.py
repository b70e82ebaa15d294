"""
Governance Projections - Read models built from the event log

Projections are disposable: they are rebuilt from the log on start and caught
up from it (by global log position) before every decision, so several engine
instances sharing one SQLite file see each other's writes.
"""

import threading
from datetime import datetime
from typing import Any

from polity.governance.events import ALLIANCE_STREAM, ROSTER_STREAM, alliance_stream_id
from polity.governance.models import AllianceStatus, LawType, ProposalStatus, Rank
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.events import Event
from polity.kernel.logging import get_logger
from polity.kernel.metrics import active_alliances

logger = get_logger(__name__)


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Payload timestamps are ISO strings after the JSON round trip"""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class ProposalRegistry:
    """
    Projection: every proposal with its status, tallies and execution audit

    Vote tallies are folded in as VoteCast events arrive; the first vote per
    user wins (the store never accepts a second one anyway). A vote that lands
    in the log after the proposal was resolved is not counted.
    """

    def __init__(self) -> None:
        self.proposals: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload

        if event.event_type == "ProposalCreated":
            metadata = payload.get("metadata", {})
            self.proposals[payload["proposal_id"]] = {
                "proposal_id": payload["proposal_id"],
                "community_id": payload["community_id"],
                "law_type": payload["law_type"],
                "proposer_id": payload["proposer_id"],
                "governance_type": payload["governance_type"],
                "metadata": metadata,
                "target_community_id": metadata.get("target_community_id"),
                "mirrored_from_proposal_id": payload.get("mirrored_from_proposal_id"),
                "status": ProposalStatus.PENDING.value,
                "created_at": parse_timestamp(payload["created_at"]),
                "expires_at": parse_timestamp(payload["expires_at"]),
                "resolved_at": None,
                "resolution_notes": None,
                "resolution_trigger": None,
                "executed_at": None,
                "execution_error": None,
                "execution_details": None,
                "yes_votes": 0,
                "no_votes": 0,
                "counterpart_yes_votes": 0,
                "counterpart_no_votes": 0,
                "sovereign_vote": None,
                "votes": {},
                "version": event.version,
            }

        elif event.event_type == "VoteCast":
            proposal = self.proposals.get(payload["proposal_id"])
            if (
                proposal is None
                or proposal["status"] != ProposalStatus.PENDING.value
                or payload["user_id"] in proposal["votes"]
            ):
                return
            vote = payload["vote"]
            proposal["votes"][payload["user_id"]] = vote
            if payload.get("counts_toward_resolution", True):
                proposal["yes_votes" if vote == "yes" else "no_votes"] += 1
                if payload.get("rank_tier") == Rank.SOVEREIGN:
                    proposal["sovereign_vote"] = vote
            else:
                key = "counterpart_yes_votes" if vote == "yes" else "counterpart_no_votes"
                proposal[key] += 1

        elif event.event_type == "ProposalResolved":
            proposal = self.proposals.get(payload["proposal_id"])
            if proposal is not None:
                proposal["status"] = payload["status"]
                proposal["resolved_at"] = parse_timestamp(payload["resolved_at"])
                proposal["resolution_notes"] = payload.get("resolution_notes")
                proposal["resolution_trigger"] = payload.get("trigger")
                proposal["version"] = event.version

        elif event.event_type == "LawExecuted":
            proposal = self.proposals.get(payload["proposal_id"])
            if proposal is not None:
                proposal["executed_at"] = parse_timestamp(payload["executed_at"])
                proposal["execution_details"] = payload.get("details", {})
                proposal["version"] = event.version

        elif event.event_type == "LawExecutionFailed":
            proposal = self.proposals.get(payload["proposal_id"])
            if proposal is not None:
                proposal["execution_error"] = payload["reason"]
                proposal["version"] = event.version

    def get(self, proposal_id: str) -> dict[str, Any] | None:
        """Get proposal by ID"""
        return self.proposals.get(proposal_id)

    def list_pending(self, community_id: str | None = None) -> list[dict[str, Any]]:
        return [
            p
            for p in self.proposals.values()
            if p["status"] == ProposalStatus.PENDING.value
            and (community_id is None or p["community_id"] == community_id)
        ]

    def list_active_for(self, community_id: str) -> list[dict[str, Any]]:
        """
        Pending proposals a community's members can see and act on

        Its own proposals, plus alliance proposals from other communities that
        target it. Newest first.
        """
        active = [
            p
            for p in self.list_pending()
            if p["community_id"] == community_id
            or (
                p["law_type"] == LawType.CFC_ALLIANCE.value
                and p["target_community_id"] == community_id
            )
        ]
        return sorted(active, key=lambda p: p["created_at"], reverse=True)

    def list_resolved(self, community_id: str) -> list[dict[str, Any]]:
        """Resolved proposals, most recently resolved first"""
        resolved = [
            p
            for p in self.proposals.values()
            if p["community_id"] == community_id
            and p["status"] != ProposalStatus.PENDING.value
        ]
        return sorted(
            resolved,
            key=lambda p: (p["resolved_at"] or p["created_at"], p["created_at"]),
            reverse=True,
        )

    def list_expired_pending(self, now: datetime) -> list[dict[str, Any]]:
        """Pending proposals whose window has closed, oldest deadline first"""
        expired = [p for p in self.list_pending() if p["expires_at"] <= now]
        return sorted(expired, key=lambda p: (p["expires_at"], p["created_at"]))

    def pending_of_type(self, community_id: str, law_type: LawType) -> list[dict[str, Any]]:
        return [p for p in self.list_pending(community_id) if p["law_type"] == law_type.value]

    def last_proposed_at(self, community_id: str, law_type: LawType) -> datetime | None:
        """Creation time of the newest proposal of this type in the community"""
        times = [
            p["created_at"]
            for p in self.proposals.values()
            if p["community_id"] == community_id and p["law_type"] == law_type.value
        ]
        return max(times) if times else None

    def find_alliance_proposals(
        self,
        from_community_id: str,
        to_community_id: str,
        statuses: set[str],
    ) -> list[dict[str, Any]]:
        """Alliance proposals raised by one community toward another, oldest first"""
        found = [
            p
            for p in self.proposals.values()
            if p["law_type"] == LawType.CFC_ALLIANCE.value
            and p["community_id"] == from_community_id
            and p["target_community_id"] == to_community_id
            and p["status"] in statuses
        ]
        return sorted(found, key=lambda p: p["created_at"])

    def count_pending(self) -> int:
        return len(self.list_pending())


class AllianceRegistry:
    """
    Projection: current alliance record per unordered community pair

    A rejected pair can be requested again later; the newest request
    replaces the record. Roster versions track each community's
    alliance_roster stream, the guard for its alliance cap.
    """

    def __init__(self) -> None:
        self.alliances: dict[str, dict[str, Any]] = {}
        self.roster_versions: dict[str, int] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload

        if event.event_type == "AllianceRequested":
            self.alliances[event.stream_id] = {
                "alliance_id": payload["alliance_id"],
                "pair_key": event.stream_id,
                "initiator_community_id": payload["initiator_community_id"],
                "target_community_id": payload["target_community_id"],
                "initiator_proposal_id": payload["initiator_proposal_id"],
                "target_proposal_id": payload["target_proposal_id"],
                "status": payload.get("status", AllianceStatus.PENDING_TARGET_APPROVAL.value),
                "created_at": parse_timestamp(payload["requested_at"]),
                "activated_at": None,
                "ended_at": None,
                "rejection_reason": None,
                "version": event.version,
            }

        elif event.event_type == "AllianceActivated":
            record = self.alliances.get(event.stream_id)
            activated_at = parse_timestamp(payload["activated_at"])
            if record is None or record["alliance_id"] != payload["alliance_id"]:
                # Reciprocal proposals activate without a prior request record
                record = {
                    "alliance_id": payload["alliance_id"],
                    "pair_key": event.stream_id,
                    "created_at": activated_at,
                    "ended_at": None,
                    "rejection_reason": None,
                }
                self.alliances[event.stream_id] = record
            record.update(
                {
                    "initiator_community_id": payload["initiator_community_id"],
                    "target_community_id": payload["target_community_id"],
                    "initiator_proposal_id": payload["initiator_proposal_id"],
                    "target_proposal_id": payload["target_proposal_id"],
                    "status": AllianceStatus.ACTIVE.value,
                    "activated_at": activated_at,
                    "version": event.version,
                }
            )

        elif event.event_type == "AllianceJoined":
            self.roster_versions[payload["community_id"]] = event.version

        elif event.event_type == "AllianceRejected":
            record = self.alliances.get(event.stream_id)
            if record is not None and record["alliance_id"] == payload["alliance_id"]:
                record["status"] = AllianceStatus.REJECTED.value
                record["ended_at"] = parse_timestamp(payload["rejected_at"])
                record["rejection_reason"] = payload.get("reason")
                record["version"] = event.version

    def get_by_pair(self, community_a: str, community_b: str) -> dict[str, Any] | None:
        return self.alliances.get(alliance_stream_id(community_a, community_b))

    def stream_version(self, community_a: str, community_b: str) -> int:
        record = self.get_by_pair(community_a, community_b)
        return record["version"] if record else 0

    def roster_version(self, community_id: str) -> int:
        return self.roster_versions.get(community_id, 0)

    def list_for(self, community_id: str, status: str | None = None) -> list[dict[str, Any]]:
        """Alliances a community takes part in, newest first"""
        records = [
            a
            for a in self.alliances.values()
            if community_id in (a["initiator_community_id"], a["target_community_id"])
            and (status is None or a["status"] == status)
        ]
        return sorted(records, key=lambda a: a["created_at"], reverse=True)

    def count_active(self, community_id: str) -> int:
        return len(self.list_for(community_id, AllianceStatus.ACTIVE.value))

    def count_active_total(self) -> int:
        return sum(1 for a in self.alliances.values() if a["status"] == AllianceStatus.ACTIVE.value)

    def are_allied(self, community_a: str, community_b: str) -> bool:
        record = self.get_by_pair(community_a, community_b)
        return record is not None and record["status"] == AllianceStatus.ACTIVE.value


class GovernanceProjections:
    """
    All governance read models plus the log position they reflect

    Mutation is serialized with a re-entrant lock. Events at or below the
    current position are skipped, so catching up twice is harmless.
    """

    def __init__(self) -> None:
        self.proposals = ProposalRegistry()
        self.alliances = AllianceRegistry()
        self.position = 0
        self.lock = threading.RLock()

    def apply_event(self, event: Event) -> None:
        if event.position is not None and event.position <= self.position:
            return
        if event.stream_type in (ALLIANCE_STREAM, ROSTER_STREAM):
            self.alliances.apply_event(event)
        elif event.stream_type in ("proposal", "vote"):
            self.proposals.apply_event(event)
        if event.position is not None:
            self.position = event.position

    def catch_up(self, event_store: SQLiteEventStore) -> int:
        """
        Apply every event appended since the last catch-up

        Returns:
            Number of events applied
        """
        with self.lock:
            events = event_store.load_all_events(after_position=self.position)
            for event in events:
                self.apply_event(event)
            if events:
                active_alliances.set(self.alliances.count_active_total())
                logger.debug("Projections caught up", applied=len(events), position=self.position)
            return len(events)

    def rebuild(self, event_store: SQLiteEventStore) -> int:
        """Discard all state and replay the whole log"""
        with self.lock:
            self.proposals = ProposalRegistry()
            self.alliances = AllianceRegistry()
            self.position = 0
            return self.catch_up(event_store)
