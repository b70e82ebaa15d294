"""
Tests for the alliance handshake

An alliance is active only once both communities have passed it; a request
that fails on the other side leaves nothing active, and no community ever
holds more active alliances than the policy allows.
"""

import pytest

from polity.governance.models import AllianceStatus, ProposalStatus
from polity.kernel.errors import (
    AllianceAlreadyActive,
    AllianceLimitExceeded,
    DuplicateProposal,
    TargetNotFound,
)
from polity.kernel.time import TestTimeProvider
from polity.polity import Polity
from tests.helpers import RecordingNotifier, metric_value, seed_community

PENDING = AllianceStatus.PENDING_TARGET_APPROVAL.value


@pytest.fixture
def north(polity: Polity) -> str:
    return seed_community(polity, "North")


@pytest.fixture
def south(polity: Polity) -> str:
    return seed_community(polity, "South")


def mirror_of(polity: Polity, target_id: str, proposal_id: str) -> dict:
    return next(
        p
        for p in polity.list_active_proposals(target_id)
        if p["mirrored_from_proposal_id"] == proposal_id
    )


def request_alliance(polity: Polity, prefix: str, community_id: str, target_id: str) -> dict:
    """Propose and pass an alliance on the initiating side"""
    proposal = polity.propose(
        community_id, "CFC_ALLIANCE", {"target_community_id": target_id}, f"{prefix}-sovereign"
    )
    polity.vote(proposal["proposal_id"], f"{prefix}-sovereign", "yes")
    return proposal


def ally(polity: Polity, a_prefix: str, a_id: str, b_prefix: str, b_id: str) -> None:
    proposal = request_alliance(polity, a_prefix, a_id, b_id)
    mirror = mirror_of(polity, b_id, proposal["proposal_id"])
    polity.fast_track(mirror["proposal_id"], f"{b_prefix}-sovereign")


class TestMirrorHandshake:
    def test_pass_on_one_side_opens_mirror(self, polity: Polity, north: str, south: str) -> None:
        proposal = request_alliance(polity, "north", north, south)

        assert polity.get_proposal(proposal["proposal_id"])["status"] == "passed"
        assert not polity.are_allied(north, south)

        alliances = polity.list_alliances(north)
        assert len(alliances) == 1
        assert alliances[0]["status"] == PENDING
        assert alliances[0]["initiator_community_id"] == north

        mirror = mirror_of(polity, south, proposal["proposal_id"])
        assert mirror["community_id"] == south
        assert mirror["target_community_id"] == north
        assert mirror["law_type"] == "CFC_ALLIANCE"
        assert alliances[0]["target_proposal_id"] == mirror["proposal_id"]

    def test_mirror_pass_activates(self, polity: Polity, north: str, south: str) -> None:
        proposal = request_alliance(polity, "north", north, south)
        mirror = mirror_of(polity, south, proposal["proposal_id"])

        polity.vote(mirror["proposal_id"], "south-sovereign", "yes")

        assert polity.are_allied(north, south)
        assert polity.are_allied(south, north)
        record = polity.list_alliances(south, "active")[0]
        assert record["initiator_proposal_id"] == proposal["proposal_id"]
        assert record["target_proposal_id"] == mirror["proposal_id"]
        assert record["activated_at"] is not None

    def test_mirror_rejection_rejects_alliance(self, polity: Polity, north: str, south: str) -> None:
        proposal = request_alliance(polity, "north", north, south)
        mirror = mirror_of(polity, south, proposal["proposal_id"])

        polity.vote(mirror["proposal_id"], "south-sovereign", "no")

        assert not polity.are_allied(north, south)
        record = polity.list_alliances(north)[0]
        assert record["status"] == AllianceStatus.REJECTED.value
        assert record["ended_at"] is not None

    def test_mirror_expiry_rejects_alliance(
        self, polity: Polity, north: str, south: str, test_time: TestTimeProvider
    ) -> None:
        request_alliance(polity, "north", north, south)
        test_time.advance_hours(25)

        result = polity.sweep_expired()

        assert result["expired"] == 1
        assert polity.list_alliances(north)[0]["status"] == AllianceStatus.REJECTED.value

    def test_rejected_pair_can_try_again(self, polity: Polity, north: str, south: str) -> None:
        proposal = request_alliance(polity, "north", north, south)
        polity.vote(mirror_of(polity, south, proposal["proposal_id"])["proposal_id"], "south-sovereign", "no")

        ally(polity, "north", north, "south", south)

        assert polity.are_allied(north, south)

    def test_target_sees_incoming_proposal(
        self, polity: Polity, notifier: RecordingNotifier, north: str, south: str
    ) -> None:
        proposal = polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")

        assert proposal["proposal_id"] in [p["proposal_id"] for p in polity.list_active_proposals(south)]
        assert "proposed" in notifier.kinds_for(south, proposal["proposal_id"])

    def test_target_votes_are_counterpart_votes(self, polity: Polity, north: str, south: str) -> None:
        proposal = polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")

        result = polity.vote(proposal["proposal_id"], "south-sovereign", "yes")

        assert result["status"] == "pending"
        view = polity.get_proposal(proposal["proposal_id"])
        assert view["yes_votes"] == 0
        assert view["counterpart_yes_votes"] == 1


class TestReciprocalProposals:
    def test_both_pending_first_pass_activates(self, polity: Polity, north: str, south: str) -> None:
        ours = polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")
        theirs = polity.propose(south, "CFC_ALLIANCE", {"target_community_id": north}, "south-sovereign")

        polity.vote(ours["proposal_id"], "north-sovereign", "yes")

        assert polity.are_allied(north, south)
        settled = polity.get_proposal(theirs["proposal_id"])
        assert settled["status"] == ProposalStatus.PASSED.value
        assert settled["resolution_trigger"] == "alliance"
        # No mirror was needed
        assert [p for p in polity.list_active_proposals(south) if p["law_type"] == "CFC_ALLIANCE"] == []

    def test_open_mirror_is_the_answer(self, polity: Polity, north: str, south: str) -> None:
        """While South's request is open, North answers through the mirror only"""
        theirs = request_alliance(polity, "south", south, north)

        with pytest.raises(DuplicateProposal):
            polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")

        mirror = mirror_of(polity, north, theirs["proposal_id"])
        polity.vote(mirror["proposal_id"], "north-sovereign", "yes")

        record = polity.list_alliances(north, "active")[0]
        assert record["initiator_community_id"] == south
        assert record["target_community_id"] == north

    def test_exactly_one_alliance_event_per_activation(self, polity: Polity, north: str, south: str) -> None:
        ours = polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")
        polity.propose(south, "CFC_ALLIANCE", {"target_community_id": north}, "south-sovereign")
        polity.vote(ours["proposal_id"], "north-sovereign", "yes")

        activations = polity.event_store.query_events(event_type="AllianceActivated")
        assert len(activations) == 1


class TestProposalChecks:
    def test_already_allied(self, polity: Polity, north: str, south: str) -> None:
        ally(polity, "north", north, "south", south)

        with pytest.raises(AllianceAlreadyActive):
            polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")

    def test_request_already_awaiting_target(self, polity: Polity, north: str, south: str) -> None:
        request_alliance(polity, "north", north, south)

        with pytest.raises(DuplicateProposal):
            polity.propose(north, "CFC_ALLIANCE", {"target_community_id": south}, "north-sovereign")

    def test_unknown_target(self, polity: Polity, north: str) -> None:
        with pytest.raises(TargetNotFound):
            polity.propose(north, "CFC_ALLIANCE", {"target_community_id": "atlantis"}, "north-sovereign")


class TestAllianceLimit:
    def test_sixth_alliance_cannot_be_proposed(self, polity: Polity, north: str) -> None:
        for i in range(5):
            other = seed_community(polity, f"Ally{i}")
            ally(polity, "north", north, f"ally{i}", other)
        sixth = seed_community(polity, "Ally5")

        assert len(polity.list_alliances(north, "active")) == 5
        with pytest.raises(AllianceLimitExceeded):
            polity.propose(north, "CFC_ALLIANCE", {"target_community_id": sixth}, "north-sovereign")

    def test_target_at_cap_fails_activation(
        self, polity: Polity, notifier: RecordingNotifier, north: str
    ) -> None:
        hub = seed_community(polity, "Hub")
        for i in range(5):
            other = seed_community(polity, f"Spoke{i}")
            ally(polity, "hub", hub, f"spoke{i}", other)
        failures_before = metric_value(
            "polity_law_executions_total", {"law_type": "CFC_ALLIANCE", "outcome": "failure"}
        )

        proposal = request_alliance(polity, "north", north, hub)
        mirror = mirror_of(polity, hub, proposal["proposal_id"])
        polity.vote(mirror["proposal_id"], "hub-sovereign", "yes")

        assert not polity.are_allied(north, hub)
        assert len(polity.list_alliances(hub, "active")) == 5
        assert polity.list_alliances(north)[0]["status"] == AllianceStatus.REJECTED.value

        settled = polity.get_proposal(mirror["proposal_id"])
        assert settled["status"] == "passed"
        assert "maximum of 5 active alliances" in settled["execution_error"]
        assert "execution_failed" in notifier.kinds_for(hub, mirror["proposal_id"])
        assert metric_value(
            "polity_law_executions_total", {"law_type": "CFC_ALLIANCE", "outcome": "failure"}
        ) == failures_before + 1
