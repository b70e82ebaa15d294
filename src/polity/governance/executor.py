"""
Law Executor - Apply the side effect of a passed law

One handler per law type behind the LawHandler interface, looked up in a
dispatch table. Each handler re-validates its metadata and makes exactly one
call on the community mutation boundary (alliances go to the coordinator).

Execution never changes the vote outcome. Success is recorded as LawExecuted;
a failure is logged, recorded as LawExecutionFailed and reported through the
notifier as execution_failed, while the proposal stays passed.
"""

from abc import ABC, abstractmethod
from typing import Any

from polity.community.ports import CommunityMutations, Notifier
from polity.governance.alliance import AllianceCoordinator
from polity.governance.handlers import GovernanceCommandHandlers
from polity.governance.invariants import validate_metadata
from polity.governance.models import LawType, ProposalStatus
from polity.governance.projections import GovernanceProjections
from polity.governance.rules import get_rules
from polity.kernel.errors import LawExecutionError, StreamVersionConflict
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.ids import generate_id
from polity.kernel.logging import get_logger, is_production
from polity.kernel.metrics import law_executions_total
from polity.kernel.policy import GovernancePolicy

logger = get_logger(__name__)


class LawHandler(ABC):
    """Applies one law type"""

    law_type: LawType

    def __init__(self, mutations: CommunityMutations, policy: GovernancePolicy) -> None:
        self.mutations = mutations
        self.policy = policy

    def validated_metadata(self, proposal: dict[str, Any]) -> dict[str, Any]:
        rules = get_rules(proposal["law_type"], proposal["governance_type"])
        return validate_metadata(self.law_type, proposal["metadata"], rules, self.policy)

    @abstractmethod
    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        """Perform the mutation; return details for the audit record"""


class AnnouncementHandler(LawHandler):
    law_type = LawType.MESSAGE_OF_THE_DAY

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        metadata = self.validated_metadata(proposal)
        title = metadata.get("title") or "Community Message"
        self.mutations.set_announcement(proposal["community_id"], title, metadata["content"])
        return {"title": title}


class DeclareWarHandler(LawHandler):
    law_type = LawType.DECLARE_WAR

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        metadata = self.validated_metadata(proposal)
        conflict_id = self.mutations.create_conflict(
            proposal["community_id"], metadata["target_community_id"]
        )
        return {"conflict_id": conflict_id, "target_community_id": metadata["target_community_id"]}


class HeirHandler(LawHandler):
    law_type = LawType.PROPOSE_HEIR

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        metadata = self.validated_metadata(proposal)
        self.mutations.designate_heir(proposal["community_id"], metadata["target_user_id"])
        return {"heir_id": metadata["target_user_id"]}


class GovernanceChangeHandler(LawHandler):
    law_type = LawType.CHANGE_GOVERNANCE

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        metadata = self.validated_metadata(proposal)
        self.mutations.set_governance_type(
            proposal["community_id"], metadata["new_governance_type"]
        )
        return {"governance_type": metadata["new_governance_type"]}


class WorkTaxHandler(LawHandler):
    law_type = LawType.WORK_TAX

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        rate = self.validated_metadata(proposal)["tax_rate"]
        self.mutations.set_work_tax_rate(proposal["community_id"], rate)
        return {"tax_rate": rate}


class ImportTariffHandler(LawHandler):
    law_type = LawType.IMPORT_TARIFF

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        rate = self.validated_metadata(proposal)["tariff_rate"]
        self.mutations.set_import_tariff_rate(proposal["community_id"], rate)
        return {"tariff_rate": rate}


class CurrencyIssueHandler(LawHandler):
    law_type = LawType.ISSUE_CURRENCY

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        metadata = self.validated_metadata(proposal)
        return self.mutations.issue_currency(
            proposal["community_id"], metadata["gold_amount"], metadata["conversion_rate"]
        )


class AllianceHandler(LawHandler):
    law_type = LawType.CFC_ALLIANCE

    def __init__(
        self,
        mutations: CommunityMutations,
        policy: GovernancePolicy,
        coordinator: AllianceCoordinator,
    ) -> None:
        super().__init__(mutations, policy)
        self.coordinator = coordinator

    def apply(self, proposal: dict[str, Any]) -> dict[str, Any]:
        self.validated_metadata(proposal)
        return self.coordinator.on_alliance_passed(proposal)


def build_law_handlers(
    mutations: CommunityMutations,
    policy: GovernancePolicy,
    coordinator: AllianceCoordinator,
) -> dict[LawType, LawHandler]:
    """Dispatch table covering every law type"""
    handlers: list[LawHandler] = [
        AnnouncementHandler(mutations, policy),
        DeclareWarHandler(mutations, policy),
        HeirHandler(mutations, policy),
        GovernanceChangeHandler(mutations, policy),
        WorkTaxHandler(mutations, policy),
        ImportTariffHandler(mutations, policy),
        CurrencyIssueHandler(mutations, policy),
        AllianceHandler(mutations, policy, coordinator),
    ]
    table = {handler.law_type: handler for handler in handlers}
    missing = set(LawType) - set(table)
    if missing:
        raise ValueError(f"No law handler for: {sorted(m.value for m in missing)}")
    return table


class LawExecutor:
    """Runs the handler of a passed proposal and records the outcome"""

    def __init__(
        self,
        event_store: SQLiteEventStore,
        projections: GovernanceProjections,
        command_handlers: GovernanceCommandHandlers,
        law_handlers: dict[LawType, LawHandler],
        notifier: Notifier,
    ) -> None:
        self.event_store = event_store
        self.projections = projections
        self.command_handlers = command_handlers
        self.law_handlers = law_handlers
        self.notifier = notifier

    def execute(self, proposal: dict[str, Any]) -> bool:
        """
        Apply a passed law

        Returns:
            True if the side effect was applied, False if it failed
        """
        if proposal["status"] != ProposalStatus.PASSED.value:
            raise ValueError(f"Proposal {proposal['proposal_id']} is {proposal['status']}, not passed")

        law_type = LawType(proposal["law_type"])
        handler = self.law_handlers[law_type]

        try:
            details = handler.apply(proposal)
        except Exception as e:
            error = LawExecutionError(proposal["proposal_id"], law_type.value, str(e))
            law_executions_total.labels(law_type=law_type.value, outcome="failure").inc()
            logger.error(
                "Law execution failed",
                proposal_id=proposal["proposal_id"],
                law_type=law_type.value,
                community_id=proposal["community_id"],
                error_type=type(e).__name__,
                error=str(error),
                exc_info=not is_production(),
            )
            self._record(proposal, error=e)
            self._notify_failure(proposal, error)
            return False

        law_executions_total.labels(law_type=law_type.value, outcome="success").inc()
        logger.info(
            "Law executed",
            proposal_id=proposal["proposal_id"],
            law_type=law_type.value,
            community_id=proposal["community_id"],
        )
        self._record(proposal, details=details)
        return True

    def _record(
        self,
        proposal: dict[str, Any],
        details: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        # Resolution is v2; anything appended while executing (none today) moves it on
        version = self.event_store.get_stream_version(proposal["proposal_id"])
        event = self.command_handlers.build_execution_record(
            proposal,
            version=version + 1,
            command_id=generate_id(),
            details=details,
            error=error,
        )
        try:
            self.event_store.append(proposal["proposal_id"], version, [event])
        except StreamVersionConflict:
            logger.warning(
                "Execution record skipped: proposal stream moved",
                proposal_id=proposal["proposal_id"],
            )
        self.projections.catch_up(self.event_store)

    def _notify_failure(self, proposal: dict[str, Any], error: LawExecutionError) -> None:
        try:
            self.notifier.notify(
                "execution_failed",
                proposal["community_id"],
                {
                    "proposal_id": proposal["proposal_id"],
                    "law_type": proposal["law_type"],
                    "status": proposal["status"],
                    "error": str(error),
                },
            )
        except Exception as e:
            logger.warning(
                "Notification failed",
                kind="execution_failed",
                proposal_id=proposal["proposal_id"],
                error=str(e),
            )
