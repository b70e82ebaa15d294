"""
Test infrastructure components: logging, metrics, retry, notifications.

These tests verify the production hardening infrastructure works correctly.
"""

import sqlite3
from datetime import datetime, timezone

import pytest
import structlog
from structlog.testing import capture_logs

from polity import metrics_server
from polity.community.notifications import LogNotifier
from polity.kernel.errors import AlreadyVoted, StreamVersionConflict
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.events import create_event
from polity.kernel.ids import generate_id
from polity.kernel.logging import (
    LogOperation,
    configure_logging,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from polity.kernel.retry import retry_on_sqlite_lock
from polity.kernel.time import TestTimeProvider
from polity.polity import Polity
from tests.helpers import metric_value, seed_community


def sample_event(stream_id: str, version: int):
    return create_event(
        event_id=generate_id(),
        stream_id=stream_id,
        stream_type="proposal",
        event_type="ProposalCreated",
        occurred_at=datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
        command_id=generate_id(),
        payload={"proposal_id": stream_id},
        version=version,
    )


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        assert get_logger(__name__) is not None

    def test_configure_logging_json(self) -> None:
        configure_logging(json_output=True, log_level="DEBUG")
        assert get_logger(__name__) is not None

    def test_correlation_id(self) -> None:
        """Test correlation ID context management."""
        assert get_correlation_id()

        set_correlation_id("vote-trace-123")
        assert get_correlation_id() == "vote-trace-123"

    def test_member_identities_redacted(self) -> None:
        redacted = redact_context(
            {"requester_id": "alice", "user_id": "bob", "proposal_id": "p1", "vote": "yes"}
        )

        assert redacted == {
            "requester_id": "***REDACTED***",
            "user_id": "***REDACTED***",
            "proposal_id": "p1",
            "vote": "yes",
        }

    def test_log_operation_success(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with LogOperation(logger, "vote", proposal_id="p1", requester_id="alice") as op:
            assert op.operation == "vote"
        assert op.start_time > 0

    def test_log_operation_reraises(self) -> None:
        logger = get_logger(__name__)

        with pytest.raises(ValueError):
            with LogOperation(logger, "propose", community_id="c1"):
                raise ValueError("bad metadata")

    def test_log_operation_binds_trace_keys(self) -> None:
        with capture_logs() as logs:
            logger = get_logger(__name__)
            with LogOperation(logger, "vote", proposal_id="p1", requester_id="alice") as op:
                assert structlog.contextvars.get_contextvars()["proposal_id"] == "p1"
                assert "requester_id" not in structlog.contextvars.get_contextvars()
                op.bind(status="passed")

        assert "proposal_id" not in structlog.contextvars.get_contextvars()
        completed = logs[-1]
        assert completed["event"] == "vote completed"
        assert completed["log_level"] == "info"
        assert completed["status"] == "passed"
        assert completed["requester_id"] == "***REDACTED***"

    def test_refused_request_logged_as_warning(self) -> None:
        with capture_logs() as logs:
            logger = get_logger(__name__)
            with pytest.raises(AlreadyVoted):
                with LogOperation(logger, "vote", proposal_id="p1"):
                    raise AlreadyVoted("p1", "alice")

        refused = logs[-1]
        assert refused["event"] == "vote refused"
        assert refused["log_level"] == "warning"
        assert refused["reason"] == "AlreadyVoted"

    def test_fault_logged_as_error(self) -> None:
        with capture_logs() as logs:
            logger = get_logger(__name__)
            with pytest.raises(RuntimeError):
                with LogOperation(logger, "sweep_expired", sweep_id="s1"):
                    raise RuntimeError("disk gone")

        failed = logs[-1]
        assert failed["event"] == "sweep_expired failed"
        assert failed["log_level"] == "error"
        assert failed["error_type"] == "RuntimeError"


class TestMetrics:
    """Test Prometheus metrics collection."""

    def test_appends_counted(self, event_store: SQLiteEventStore) -> None:
        labels = {"stream_type": "proposal", "event_type": "ProposalCreated"}
        before = metric_value("polity_events_appended_total", labels)

        event_store.append("p1", 0, [sample_event("p1", 1)])

        assert metric_value("polity_events_appended_total", labels) == before + 1

    def test_conflicts_counted(self, event_store: SQLiteEventStore) -> None:
        labels = {"stream_type": "proposal"}
        event_store.append("p1", 0, [sample_event("p1", 1)])
        before = metric_value("polity_stream_version_conflicts_total", labels)

        with pytest.raises(StreamVersionConflict):
            event_store.append("p1", 0, [sample_event("p1", 1)])

        assert metric_value("polity_stream_version_conflicts_total", labels) == before + 1

    def test_metrics_server_main(self, monkeypatch) -> None:
        started = []
        monkeypatch.setattr(metrics_server, "start_metrics_server", lambda port: started.append(port))
        monkeypatch.setattr(metrics_server.time, "sleep", self._interrupt)

        metrics_server.main(["--port", "9191", "--log-level", "WARNING"])

        assert started == [9191]

    def test_metrics_server_sweeps_database(
        self, monkeypatch, polity: Polity, temp_db, test_time: TestTimeProvider
    ) -> None:
        realm = seed_community(polity, "North")
        rival = seed_community(polity, "South")
        proposal = polity.propose(realm, "DECLARE_WAR", {"target_community_id": rival}, "north-sovereign")
        monkeypatch.setattr(metrics_server, "start_metrics_server", lambda port: None)
        monkeypatch.setattr(metrics_server.time, "sleep", self._interrupt)

        # The server sweeps on the wall clock, long after the frozen test clock
        metrics_server.main(["--db", str(temp_db), "--log-level", "WARNING"])

        assert polity.get_proposal(proposal["proposal_id"])["status"] == "expired"

    def test_metrics_server_rejects_bad_interval(self) -> None:
        with pytest.raises(SystemExit):
            metrics_server.main(["--sweep-interval", "0"])

    @staticmethod
    def _interrupt(seconds: float) -> None:
        raise KeyboardInterrupt


class TestRetryLogic:
    """Test retry logic with exponential backoff."""

    def test_retry_on_lock_succeeds(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def flaky_write() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "written"

        assert flaky_write() == "written"
        assert len(attempts) == 3

    def test_retry_gives_up(self) -> None:
        @retry_on_sqlite_lock(max_attempts=2, min_wait_ms=1, max_wait_ms=2)
        def always_locked() -> None:
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            always_locked()

    def test_other_errors_not_retried(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=5, min_wait_ms=1, max_wait_ms=2)
        def broken() -> None:
            attempts.append(1)
            raise ValueError("not a lock problem")

        with pytest.raises(ValueError):
            broken()
        assert len(attempts) == 1


class TestLogNotifier:
    def test_known_kinds(self) -> None:
        notifier = LogNotifier()
        for kind in ("proposed", "passed", "rejected", "expired", "execution_failed"):
            notifier.notify(kind, "c1", {"proposal_id": "p1"})

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError, match="Unknown notification kind"):
            LogNotifier().notify("gossip", "c1", {})
