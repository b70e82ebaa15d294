"""
Custom exceptions for Polity

Every failure a caller can act on has its own type, so the API layer can map
them to specific messages ("only the sovereign can fast-track") instead of a
generic error string.
"""


class PolityError(Exception):
    """Base exception for all Polity errors"""

    pass


class EventStoreError(PolityError):
    """Base class for event store errors"""

    pass


class CommandIdempotencyViolation(EventStoreError):
    """
    Raised when attempting to execute a command with duplicate command_id

    The store normally returns the original events instead of raising; this
    only surfaces when the duplicate was written between check and insert and
    the original events cannot be found.
    """

    def __init__(self, command_id: str, message: str = "") -> None:
        self.command_id = command_id
        super().__init__(
            message or f"Command {command_id} already processed (idempotency preserved)"
        )


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    For proposal streams this is the compare-and-swap failure: someone else
    resolved the proposal first.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class RuleTableError(PolityError):
    """Raised when the governance rule table is missing a law/governance pair"""

    def __init__(self, law_type: str, governance_type: str) -> None:
        self.law_type = law_type
        self.governance_type = governance_type
        super().__init__(
            f"No governance rules defined for law {law_type} "
            f"under governance type {governance_type}"
        )


# Request errors


class GovernanceError(PolityError):
    """Base class for errors surfaced to the caller of propose/vote/fast_track"""

    pass


class NotAuthenticated(GovernanceError):
    """Raised when an operation is attempted without a requester"""

    def __init__(self) -> None:
        super().__init__("Not authenticated")


class NotAMember(GovernanceError):
    """Raised when the requester has no rank in the relevant community"""

    def __init__(self, community_id: str, user_id: str) -> None:
        self.community_id = community_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not a member of community {community_id}")


class PermissionDenied(GovernanceError):
    """Raised when the requester's rank does not allow the operation"""

    pass


class InvalidMetadata(GovernanceError):
    """Raised when proposal metadata is missing a field or holds an out-of-range value"""

    def __init__(self, law_type: str, message: str) -> None:
        self.law_type = law_type
        super().__init__(f"Invalid metadata for {law_type}: {message}")


class DuplicateProposal(GovernanceError):
    """Raised when another pending proposal of an exclusive law type exists"""

    def __init__(self, community_id: str, law_type: str, message: str = "") -> None:
        self.community_id = community_id
        self.law_type = law_type
        super().__init__(
            message or f"A proposal for {law_type} is already pending in community {community_id}"
        )


class ProposalCooldownActive(DuplicateProposal):
    """Raised when a recurring law type is proposed again inside its cooldown window"""

    def __init__(self, community_id: str, law_type: str, cooldown_hours: int) -> None:
        self.cooldown_hours = cooldown_hours
        super().__init__(
            community_id,
            law_type,
            f"{law_type} can only be proposed once every {cooldown_hours} hours",
        )


class AlreadyVoted(GovernanceError):
    """Raised when a user votes twice on the same proposal"""

    def __init__(self, proposal_id: str, user_id: str) -> None:
        self.proposal_id = proposal_id
        self.user_id = user_id
        super().__init__(f"User {user_id} has already voted on proposal {proposal_id}")


class ProposalNotPending(GovernanceError):
    """Raised when voting on or fast-tracking a resolved proposal"""

    def __init__(self, proposal_id: str, status: str) -> None:
        self.proposal_id = proposal_id
        self.status = status
        super().__init__(f"Proposal {proposal_id} is {status} and no longer open for voting")


class ProposalNotFound(GovernanceError):
    """Raised when proposal does not exist"""

    def __init__(self, proposal_id: str) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} not found")


class CommunityNotFound(GovernanceError):
    """Raised when community does not exist"""

    def __init__(self, community_id: str) -> None:
        self.community_id = community_id
        super().__init__(f"Community {community_id} not found")


class TargetNotFound(GovernanceError):
    """Raised when a law targets a community or user that does not exist"""

    def __init__(self, target_id: str, kind: str = "community") -> None:
        self.target_id = target_id
        self.kind = kind
        super().__init__(f"Target {kind} {target_id} not found")


class AllianceLimitExceeded(GovernanceError):
    """Raised when an alliance would push a community past its active-alliance cap"""

    def __init__(self, community_id: str, limit: int) -> None:
        self.community_id = community_id
        self.limit = limit
        super().__init__(
            f"Community {community_id} has reached the maximum of {limit} active alliances"
        )


class AllianceAlreadyActive(GovernanceError):
    """Raised when two communities already hold an active alliance"""

    def __init__(self, community_a: str, community_b: str) -> None:
        self.community_a = community_a
        self.community_b = community_b
        super().__init__(
            f"Alliance between {community_a} and {community_b} is already active"
        )


# Execution errors


class LawExecutionError(PolityError):
    """
    Raised when a passed law could not be applied

    Never propagated to voters: the vote outcome stands and the failure is
    logged, audited and reported through the notifier.
    """

    def __init__(self, proposal_id: str, law_type: str, reason: str) -> None:
        self.proposal_id = proposal_id
        self.law_type = law_type
        self.reason = reason
        super().__init__(
            f"Law {law_type} resolved but could not be applied "
            f"(proposal {proposal_id}): {reason}"
        )
