"""
Kernel - Core event sourcing infrastructure

The kernel provides the append-only event log, ids, time, policy and the
ambient logging/metrics/retry machinery the governance engine builds upon.
"""

from polity.kernel.errors import (
    CommandIdempotencyViolation,
    EventStoreError,
    GovernanceError,
    PolityError,
    StreamVersionConflict,
)
from polity.kernel.events import Event
from polity.kernel.ids import generate_id
from polity.kernel.policy import GovernancePolicy
from polity.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events & policy
    "Event",
    "GovernancePolicy",
    # Errors
    "PolityError",
    "EventStoreError",
    "CommandIdempotencyViolation",
    "StreamVersionConflict",
    "GovernanceError",
]
