"""
Prometheus metrics collection for Polity.

Provides observability into proposal throughput, resolution outcomes and the
health of law execution.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ============================================================================
# Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "polity_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

stream_version_conflicts_total = Counter(
    "polity_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

# ============================================================================
# Proposal Metrics
# ============================================================================

proposals_created_total = Counter(
    "polity_proposals_created_total",
    "Total number of proposals created",
    ["law_type"],
)

votes_cast_total = Counter(
    "polity_votes_cast_total",
    "Total number of votes recorded",
    ["law_type", "vote"],
)

proposals_resolved_total = Counter(
    "polity_proposals_resolved_total",
    "Total number of proposals resolved",
    ["law_type", "status", "trigger"],  # trigger: vote, fast_track, instant, sweep, alliance
)

resolution_races_lost_total = Counter(
    "polity_resolution_races_lost_total",
    "Resolutions abandoned because another unit of work resolved first",
    ["law_type"],
)

law_executions_total = Counter(
    "polity_law_executions_total",
    "Total number of law executions",
    ["law_type", "outcome"],  # outcome: success, failure
)

# ============================================================================
# Sweeper & Alliance Metrics
# ============================================================================

sweep_duration_seconds = Histogram(
    "polity_sweep_duration_seconds",
    "Duration of expiration sweeps in seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

sweep_failures_total = Counter(
    "polity_sweep_failures_total",
    "Proposals that failed to resolve during a sweep",
)

active_alliances = Gauge(
    "polity_active_alliances",
    "Number of currently active alliances",
)


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)
