"""
Integration tests for the proposal lifecycle

Vertical slices through the engine: command → events → projections → law
execution, on a real SQLite file with a frozen clock.
"""

import pytest

from polity.governance.models import ProposalStatus
from polity.kernel.errors import (
    AlreadyVoted,
    NotAMember,
    NotAuthenticated,
    PermissionDenied,
    ProposalNotFound,
    ProposalNotPending,
)
from polity.kernel.time import TestTimeProvider
from polity.polity import Polity
from tests.helpers import FailingNotifier, RecordingNotifier, democracy, seed_community


@pytest.fixture
def realm(polity: Polity) -> str:
    """Monarchy with north-sovereign, north-secretary and two members"""
    return seed_community(polity, "North", treasury_gold=500.0)


@pytest.fixture
def rival(polity: Polity) -> str:
    return seed_community(polity, "South")


class TestInstantLaws:
    def test_work_tax_passes_and_executes_on_proposal(self, polity: Polity, realm: str) -> None:
        proposal = polity.propose(realm, "WORK_TAX", {"tax_rate": 0.15}, "north-sovereign")

        assert proposal["status"] == ProposalStatus.PASSED.value
        assert proposal["resolved_at"] == proposal["created_at"]
        assert proposal["resolution_trigger"] == "instant"
        assert proposal["executed_at"] is not None
        assert polity.get_community(realm)["work_tax_rate"] == 0.15

    def test_announcement(self, polity: Polity, realm: str) -> None:
        polity.propose(
            realm, "MESSAGE_OF_THE_DAY", {"title": "Feast", "content": "Tonight at the hall"},
            "north-sovereign",
        )

        community = polity.get_community(realm)
        assert community["announcement_title"] == "Feast"
        assert community["announcement_content"] == "Tonight at the hall"

    def test_currency_issue_burns_gold(self, polity: Polity, realm: str) -> None:
        proposal = polity.propose(
            realm, "ISSUE_CURRENCY", {"gold_amount": 200, "conversion_rate": 2.5}, "north-sovereign"
        )

        community = polity.get_community(realm)
        assert community["treasury_gold"] == 300.0
        assert community["currency_supply"] == 500.0
        assert proposal["execution_details"]["currency_minted"] == 500.0

    def test_no_vote_after_instant_pass(self, polity: Polity, realm: str) -> None:
        proposal = polity.propose(realm, "IMPORT_TARIFF", {"tariff_rate": 0.05}, "north-sovereign")

        with pytest.raises(ProposalNotPending):
            polity.vote(proposal["proposal_id"], "north-sovereign", "yes")


class TestSovereignOnly:
    def test_council_vote_does_not_decide(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")

        result = polity.vote(proposal["proposal_id"], "north-secretary", "yes")

        assert result == {"success": True, "status": "pending"}
        assert polity.get_proposal(proposal["proposal_id"])["yes_votes"] == 1

    def test_sovereign_vote_decides(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")
        polity.vote(proposal["proposal_id"], "north-secretary", "no")

        result = polity.vote(proposal["proposal_id"], "north-sovereign", "yes")

        assert result["status"] == "passed"
        conflicts = polity.communities.list_conflicts(realm)
        assert len(conflicts) == 1
        assert conflicts[0]["target_community_id"] == rival

    def test_sovereign_rejection(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")

        assert polity.vote(proposal["proposal_id"], "north-sovereign", "no")["status"] == "rejected"
        assert polity.communities.list_conflicts(realm) == []

    def test_member_without_vote_access(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")

        with pytest.raises(PermissionDenied):
            polity.vote(proposal["proposal_id"], "north-member-1", "yes")


class TestDemocracy:
    def test_majority_passes_early(self, polity: Polity) -> None:
        community_id, users = democracy(polity, "Agora", voters=5)
        proposal = polity.propose(community_id, "WORK_TAX", {"tax_rate": 0.3}, users[1])

        assert polity.vote(proposal["proposal_id"], users[2], "yes")["status"] == "pending"
        assert polity.vote(proposal["proposal_id"], users[3], "yes")["status"] == "pending"
        assert polity.vote(proposal["proposal_id"], users[4], "yes")["status"] == "passed"

        assert polity.get_community(community_id)["work_tax_rate"] == 0.3
        resolved = polity.get_proposal(proposal["proposal_id"])
        assert resolved["yes_votes"] == 3
        assert resolved["resolution_trigger"] == "vote"

    def test_majority_rejects_early(self, polity: Polity) -> None:
        community_id, users = democracy(polity, "Agora", voters=5)
        proposal = polity.propose(community_id, "WORK_TAX", {"tax_rate": 0.3}, users[0])

        for user in users[2:5]:
            status = polity.vote(proposal["proposal_id"], user, "no")["status"]

        assert status == "rejected"
        assert polity.get_community(community_id)["work_tax_rate"] == 0.0

    def test_supermajority_changes_governance(self, polity: Polity) -> None:
        community_id, users = democracy(polity, "Agora", voters=9)
        proposal = polity.propose(
            community_id, "CHANGE_GOVERNANCE", {"new_governance_type": "monarchy"}, users[4]
        )

        statuses = [polity.vote(proposal["proposal_id"], user, "yes")["status"] for user in users[:6]]

        assert statuses == ["pending"] * 5 + ["passed"]
        assert polity.get_community(community_id)["governance_type"] == "monarchy"

    def test_open_proposal_keeps_its_rules_after_governance_change(self, polity: Polity) -> None:
        community_id, users = democracy(polity, "Agora", voters=3)
        pending = polity.propose(community_id, "IMPORT_TARIFF", {"tariff_rate": 0.2}, users[0])
        polity.communities.set_governance_type(community_id, "monarchy")

        assert polity.get_proposal(pending["proposal_id"])["governance_type"] == "democracy"
        # Majority of 3 all-member voters, not the sovereign's word
        polity.vote(pending["proposal_id"], users[1], "yes")
        assert polity.vote(pending["proposal_id"], users[2], "yes")["status"] == "passed"


class TestVoting:
    def test_double_vote(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")
        polity.vote(proposal["proposal_id"], "north-secretary", "yes")

        with pytest.raises(AlreadyVoted):
            polity.vote(proposal["proposal_id"], "north-secretary", "no")

    def test_unknown_proposal(self, polity: Polity) -> None:
        with pytest.raises(ProposalNotFound):
            polity.vote("nope", "anyone", "yes")

    def test_outsider_vote(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")

        with pytest.raises(NotAMember):
            polity.vote(proposal["proposal_id"], "south-sovereign", "yes")

    def test_anonymous_vote(self, polity: Polity, realm: str, rival: str) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")

        with pytest.raises(NotAuthenticated):
            polity.vote(proposal["proposal_id"], None, "yes")

    def test_vote_after_deadline_while_pending(
        self, polity: Polity, realm: str, rival: str, test_time: TestTimeProvider
    ) -> None:
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")
        test_time.advance_hours(30)

        assert polity.vote(proposal["proposal_id"], "north-sovereign", "yes")["status"] == "passed"


class TestFastTrack:
    def test_sovereign_fast_tracks_heir(self, polity: Polity, realm: str) -> None:
        proposal = polity.propose(realm, "PROPOSE_HEIR", {"target_user_id": "north-member-1"}, "north-sovereign")

        result = polity.fast_track(proposal["proposal_id"], "north-sovereign")

        assert result == {"success": True, "status": "passed"}
        assert polity.get_community(realm)["heir_id"] == "north-member-1"
        assert polity.get_proposal(proposal["proposal_id"])["resolution_trigger"] == "fast_track"

    def test_secretary_cannot(self, polity: Polity, realm: str) -> None:
        proposal = polity.propose(realm, "PROPOSE_HEIR", {"target_user_id": "north-member-1"}, "north-sovereign")

        with pytest.raises(PermissionDenied, match="Only the sovereign"):
            polity.fast_track(proposal["proposal_id"], "north-secretary")

    def test_resolved_proposal(self, polity: Polity, realm: str) -> None:
        proposal = polity.propose(realm, "PROPOSE_HEIR", {"target_user_id": "north-member-1"}, "north-sovereign")
        polity.vote(proposal["proposal_id"], "north-sovereign", "no")

        with pytest.raises(ProposalNotPending):
            polity.fast_track(proposal["proposal_id"], "north-sovereign")


class TestNotifications:
    def test_proposed_and_passed(self, polity: Polity, notifier: RecordingNotifier, realm: str) -> None:
        proposal = polity.propose(realm, "PROPOSE_HEIR", {"target_user_id": "north-member-2"}, "north-sovereign")
        polity.vote(proposal["proposal_id"], "north-sovereign", "yes")

        assert notifier.kinds_for(realm, proposal["proposal_id"]) == ["proposed", "passed"]

    def test_failing_notifier_never_blocks(self, temp_db, test_time: TestTimeProvider) -> None:
        polity = Polity(temp_db, time_provider=test_time, notifier=FailingNotifier())
        realm = seed_community(polity, "North")

        proposal = polity.propose(realm, "WORK_TAX", {"tax_rate": 0.1}, "north-sovereign")

        assert proposal["status"] == "passed"
        assert polity.get_community(realm)["work_tax_rate"] == 0.1


def test_proposal_view_hides_ballots(polity: Polity, realm: str, rival: str) -> None:
    proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")
    polity.vote(proposal["proposal_id"], "north-secretary", "yes")

    view = polity.get_proposal(proposal["proposal_id"])
    assert "votes" not in view
    assert "version" not in view
    assert view["total_votes"] == 1
