"""
Expiration Sweeper - Resolve proposals whose voting window has closed

The engine owns no timers: an external scheduler (cron, the CLI `sweep`
command) calls sweep(now). Each expired proposal is evaluated in final mode
and resolved independently; one failure is recorded and the batch goes on.
"""

import time
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from polity.governance.lifecycle import ProposalLifecycle
from polity.governance.models import ProposalStatus, ThresholdStatus
from polity.governance.rules import get_rules
from polity.governance.thresholds import evaluate_final
from polity.kernel.ids import generate_id
from polity.kernel.logging import LogOperation, get_logger
from polity.kernel.metrics import sweep_duration_seconds, sweep_failures_total
from polity.kernel.time import TimeProvider

logger = get_logger(__name__)


class SweepFailure(BaseModel):
    proposal_id: str
    error_type: str
    error: str


class SweepResult(BaseModel):
    """
    Outcome of one sweep

    processed counts every expired proposal selected; skipped ones were
    resolved by someone else between selection and our write.
    """

    sweep_id: str
    swept_at: datetime
    processed: int = 0
    passed: int = 0
    rejected: int = 0
    expired: int = 0
    skipped: int = 0
    failures: list[SweepFailure] = Field(default_factory=list)

    def summary(self) -> str:
        """Human-readable summary of sweep result"""
        parts = [
            f"Sweep {self.sweep_id} at {self.swept_at.isoformat()}",
            f"processed={self.processed}",
            f"passed={self.passed}",
            f"rejected={self.rejected}",
            f"expired={self.expired}",
        ]
        if self.skipped:
            parts.append(f"skipped={self.skipped}")
        if self.failures:
            parts.append(f"failures={len(self.failures)}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ExpirationSweeper:
    """Selects expired pending proposals and resolves them in final mode"""

    def __init__(self, lifecycle: ProposalLifecycle, time_provider: TimeProvider) -> None:
        self.lifecycle = lifecycle
        self.time_provider = time_provider

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """
        Resolve every pending proposal with expires_at <= now

        Args:
            now: Cut-off time (defaults to the time provider's now)

        Returns:
            SweepResult with counts per outcome and collected failures
        """
        now = now or self.time_provider.now()
        result = SweepResult(sweep_id=generate_id(), swept_at=now)
        projections = self.lifecycle.projections
        started = time.perf_counter()

        with LogOperation(logger, "sweep_expired", sweep_id=result.sweep_id) as op:
            with projections.lock:
                projections.catch_up(self.lifecycle.event_store)
                due = [p["proposal_id"] for p in projections.proposals.list_expired_pending(now)]

            logger.debug("Expired proposals selected", sweep_id=result.sweep_id, count=len(due))

            for proposal_id in due:
                result.processed += 1
                try:
                    outcome = self._resolve_one(proposal_id)
                except Exception as e:
                    sweep_failures_total.inc()
                    logger.error(
                        "Sweep failed for proposal",
                        sweep_id=result.sweep_id,
                        proposal_id=proposal_id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    result.failures.append(
                        SweepFailure(
                            proposal_id=proposal_id,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                    )
                    continue

                if outcome is None:
                    result.skipped += 1
                else:
                    setattr(result, outcome.value, getattr(result, outcome.value) + 1)

            op.bind(
                processed=result.processed,
                passed=result.passed,
                rejected=result.rejected,
                expired=result.expired,
                skipped=result.skipped,
                failures=len(result.failures),
            )

        sweep_duration_seconds.observe(time.perf_counter() - started)
        return result

    def _resolve_one(self, proposal_id: str) -> ProposalStatus | None:
        """Final-mode resolution of one proposal; None if it was no longer ours to resolve"""
        lifecycle = self.lifecycle
        proposal = lifecycle.load(proposal_id)
        if proposal["status"] != ProposalStatus.PENDING.value:
            return None

        tally = lifecycle.tally(proposal)
        eligible = lifecycle.eligible_voters(proposal)
        rules = get_rules(proposal["law_type"], proposal["governance_type"])
        verdict = evaluate_final(
            tally.yes_votes,
            tally.no_votes,
            eligible,
            rules.passing_condition,
            tally.sovereign_vote,
        )

        if verdict.status == ThresholdStatus.PASSED:
            status = ProposalStatus.PASSED
        elif verdict.status == ThresholdStatus.REJECTED:
            status = ProposalStatus.REJECTED
        else:
            status = ProposalStatus.EXPIRED

        won = lifecycle.resolve(
            proposal, status, notes=verdict.reason, trigger="sweep", tally=tally
        )
        return status if won else None
