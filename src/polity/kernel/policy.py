"""
Governance Policy - Tunable parameters of the proposal engine

Limits that are community-agnostic live here rather than in the rule table:
the rule table says how a law passes, the policy says how often and how much.
"""

from pydantic import BaseModel, Field


class GovernancePolicy(BaseModel):
    """
    Engine-wide governance parameters

    Defaults mirror the limits communities have always played under; tests
    and operators may override them.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Alliances
    max_active_alliances: int = Field(
        default=5,
        ge=1,
        description="Maximum concurrently active alliances per community",
    )

    # Recurring proposals
    announcement_cooldown_hours: int = Field(
        default=24,
        ge=0,
        description="Minimum hours between two proposals of a cooldown law type",
    )

    cooldown_law_types: frozenset[str] = Field(
        default=frozenset({"MESSAGE_OF_THE_DAY"}),
        description="Law types limited to one proposal per cooldown window",
    )

    coexisting_law_types: frozenset[str] = Field(
        default=frozenset({"MESSAGE_OF_THE_DAY", "DECLARE_WAR"}),
        description="Law types allowed to have several pending proposals at once",
    )

    # Currency
    max_currency_issuance: int = Field(
        default=1_000_000,
        ge=1,
        description="Upper bound on gold converted in one ISSUE_CURRENCY law",
    )

    # Listings
    default_page_size: int = Field(default=10, ge=1)
    max_page_size: int = Field(default=50, ge=1)

    def clamp_page_size(self, page_size: int | None) -> int:
        """Clamp a requested page size to [1, max_page_size]"""
        if page_size is None:
            return self.default_page_size
        return max(1, min(page_size, self.max_page_size))
