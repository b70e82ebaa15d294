"""
Base Event model for event sourcing

Events are immutable facts about what happened in the system. Proposals,
votes and alliances are never updated in place: their current state is the
fold of their event streams.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Event(BaseModel):
    """
    Base event class - all domain events are stored in this envelope

    The combination of stream_id + version provides optimistic locking,
    while command_id ensures idempotency. Proposal resolution relies on the
    former: a ProposalResolved event is written at an expected version, so two
    concurrent resolutions cannot both succeed.
    """

    event_id: str = Field(
        ...,
        description="Unique event identifier (UUIDv7 for time-ordering)",
    )

    stream_id: str = Field(
        ...,
        description="Aggregate identifier: proposal id, vote key or alliance pair key",
    )

    stream_type: str = Field(
        ...,
        description="Type of aggregate: 'proposal', 'vote', 'alliance'",
    )

    event_type: str = Field(
        ...,
        description="Specific event type: 'ProposalCreated', 'VoteCast', etc.",
    )

    occurred_at: datetime = Field(
        ...,
        description="UTC timestamp when event occurred",
    )

    actor_id: str | None = Field(
        default=None,
        description="ID of actor who triggered this event (None for system events)",
    )

    command_id: str = Field(
        ...,
        description="ID of command that caused this event (idempotency key)",
    )

    payload: dict = Field(
        default_factory=dict,
        description="Event-specific data (must be JSON-serializable)",
    )

    version: int = Field(
        ...,
        description="Stream version after this event (monotonically increasing)",
        ge=1,
    )

    position: int | None = Field(
        default=None,
        description="Global log position assigned by the store (None before append)",
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "01908e9a-3b87-7000-8000-123456789abc",
                    "stream_id": "01908e9a-3b87-7000-8000-0000000000aa",
                    "stream_type": "proposal",
                    "event_type": "ProposalCreated",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_id": "user-alice",
                    "command_id": "cmd-123",
                    "payload": {"law_type": "WORK_TAX", "metadata": {"tax_rate": 0.1}},
                    "version": 1,
                }
            ]
        },
    }


def create_event(
    *,
    event_id: str,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """Factory function for creating events with all required fields"""
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
    )
