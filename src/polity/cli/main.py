"""
Polity CLI

Command-line interface for the Polity governance engine.
Provides commands for community administration, proposals, votes, sweeps and
alliances.

Usage:
    polity init --db governance.db
    polity community create --name "Northreach"
    polity community add-member --community <id> --user alice --rank 0
    polity law propose --community <id> --user alice --type WORK_TAX --metadata '{"tax_rate": 0.1}'
    polity law vote --proposal <id> --user bob --vote yes
    polity sweep
"""

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from polity.governance.models import AllianceStatus, LawType, Rank, VoteChoice
from polity.governance.rules import law_label
from polity.kernel.errors import PolityError
from polity.kernel.logging import configure_logging
from polity.polity import Polity

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(json_output=False, log_level="WARNING", stream=sys.stderr)

app = typer.Typer(
    name="polity",
    help="Polity - Community governance engine",
    add_completion=False,
)

# Sub-apps
community_app = typer.Typer(help="Community administration commands")
law_app = typer.Typer(help="Proposal and voting commands")
alliance_app = typer.Typer(help="Alliance commands")

app.add_typer(community_app, name="community")
app.add_typer(law_app, name="law")
app.add_typer(alliance_app, name="alliance")

# Global state
DEFAULT_DB = Path(".polity.db")


def get_polity(db_path: Optional[Path] = None) -> Polity:
    """Get Polity instance"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'polity init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return Polity(str(db))


def fail(error: Exception) -> None:
    """Print a governance error and exit non-zero"""
    typer.secho(f"Error: {error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def parse_metadata(metadata: Optional[str]) -> dict:
    if not metadata:
        return {}
    try:
        value = json.loads(metadata)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --metadata is not valid JSON: {e}", err=True)
        raise typer.Exit(1)
    if not isinstance(value, dict):
        typer.echo("Error: --metadata must be a JSON object", err=True)
        raise typer.Exit(1)
    return value


def echo_proposal(proposal: dict) -> None:
    typer.echo(f"  Proposal: {proposal['proposal_id']}")
    typer.echo(f"  Law: {law_label(proposal['law_type'])} ({proposal['law_type']})")
    typer.echo(f"  Community: {proposal['community_id']}")
    typer.echo(f"  Status: {proposal['status']}")
    typer.echo(f"  Votes: {proposal['yes_votes']} yes / {proposal['no_votes']} no")
    typer.echo(f"  Expires: {proposal['expires_at']}")
    if proposal.get("resolution_notes"):
        typer.echo(f"  Notes: {proposal['resolution_notes']}")
    if proposal.get("execution_error"):
        typer.echo(f"  Execution failed: {proposal['execution_error']}")


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new Polity database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    # Create database by initializing Polity
    Polity(str(db))
    typer.echo(f"✓ Initialized Polity database: {db}")


# Community commands


@community_app.command("create")
def community_create(
    name: Annotated[str, typer.Option("--name", help="Community name")],
    governance: Annotated[
        str,
        typer.Option("--governance", help="Governance type (monarchy, democracy)"),
    ] = "monarchy",
    treasury: Annotated[
        float,
        typer.Option("--treasury", help="Starting treasury gold"),
    ] = 0.0,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Create a new community"""
    polity = get_polity(db)

    try:
        community = polity.create_community(name, governance, treasury_gold=treasury)
    except ValueError as e:
        fail(e)

    typer.echo(f"✓ Created community: {community['community_id']}")
    typer.echo(f"  Name: {community['name']}")
    typer.echo(f"  Governance: {community['governance_type']}")


@community_app.command("add-member")
def community_add_member(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    user: Annotated[str, typer.Option("--user", help="User ID")],
    rank: Annotated[
        int,
        typer.Option("--rank", help="Rank tier (0 sovereign, 1 secretary, 10 member)"),
    ] = Rank.MEMBER,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Add a member to a community (or change their rank)"""
    polity = get_polity(db)

    try:
        member = polity.add_member(community, user, rank)
    except PolityError as e:
        fail(e)

    typer.echo(f"✓ {member['user_id']} holds rank {member['rank_tier']} in {community}")


@community_app.command("show")
def community_show(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Show community state and members"""
    polity = get_polity(db)

    try:
        data = polity.get_community(community)
    except PolityError as e:
        fail(e)

    if json_output:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    typer.echo(f"{data['name']} ({data['community_id']})")
    typer.echo(f"  Governance: {data['governance_type']}")
    typer.echo(f"  Work tax: {data['work_tax_rate']}")
    typer.echo(f"  Import tariff: {data['import_tariff_rate']}")
    typer.echo(f"  Treasury gold: {data['treasury_gold']}")
    typer.echo(f"  Currency supply: {data['currency_supply']}")
    if data.get("heir_id"):
        typer.echo(f"  Heir: {data['heir_id']}")
    if data.get("announcement_title"):
        typer.echo(f"  Announcement: {data['announcement_title']}: {data['announcement_content']}")
    typer.echo(f"  Members ({len(data['members'])}):")
    for member in data["members"]:
        typer.echo(f"    {member['user_id']} (rank {member['rank_tier']})")


# Law commands


@law_app.command("propose")
def law_propose(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    user: Annotated[str, typer.Option("--user", help="Proposing user ID")],
    law_type: Annotated[LawType, typer.Option("--type", help="Law type")],
    metadata: Annotated[
        Optional[str],
        typer.Option("--metadata", help="Law metadata (JSON)"),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Propose a law"""
    polity = get_polity(db)

    try:
        proposal = polity.propose(community, law_type, parse_metadata(metadata), user)
    except PolityError as e:
        fail(e)

    typer.echo(f"✓ Proposed {proposal['law_type']}: {proposal['proposal_id']}")
    echo_proposal(proposal)


@law_app.command("vote")
def law_vote(
    proposal: Annotated[str, typer.Option("--proposal", help="Proposal ID")],
    user: Annotated[str, typer.Option("--user", help="Voting user ID")],
    vote: Annotated[VoteChoice, typer.Option("--vote", help="yes or no")],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Vote on a pending proposal"""
    polity = get_polity(db)

    try:
        result = polity.vote(proposal, user, vote)
    except PolityError as e:
        fail(e)

    typer.echo(f"✓ Vote recorded: {vote.value}")
    typer.echo(f"  Proposal status: {result['status']}")


@law_app.command("fast-track")
def law_fast_track(
    proposal: Annotated[str, typer.Option("--proposal", help="Proposal ID")],
    user: Annotated[str, typer.Option("--user", help="Sovereign user ID")],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Pass a pending proposal immediately (sovereign only)"""
    polity = get_polity(db)

    try:
        polity.fast_track(proposal, user)
    except PolityError as e:
        fail(e)

    typer.echo(f"✓ Fast-tracked proposal: {proposal}")


@law_app.command("show")
def law_show(
    proposal: Annotated[str, typer.Option("--proposal", help="Proposal ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Show a proposal"""
    polity = get_polity(db)

    try:
        data = polity.get_proposal(proposal)
    except PolityError as e:
        fail(e)

    if json_output:
        typer.echo(json.dumps(data, indent=2, default=str))
        return
    echo_proposal(data)


@law_app.command("active")
def law_active(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """List pending proposals visible to a community"""
    polity = get_polity(db)
    proposals = polity.list_active_proposals(community)

    if not proposals:
        typer.echo("No active proposals")
        return

    typer.echo(f"Active Proposals ({len(proposals)}):")
    for p in proposals:
        typer.echo(
            f"  {p['proposal_id']}: {law_label(p['law_type'])} "
            f"({p['yes_votes']} yes / {p['no_votes']} no, expires {p['expires_at']})"
        )


@law_app.command("resolved")
def law_resolved(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    page: Annotated[int, typer.Option("--page", help="Page number")] = 1,
    page_size: Annotated[
        Optional[int],
        typer.Option("--page-size", help="Items per page"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """List resolved proposals, most recent first"""
    polity = get_polity(db)
    result = polity.list_resolved_proposals(community, page=page, page_size=page_size)

    if json_output:
        typer.echo(json.dumps(result, indent=2, default=str))
        return

    typer.echo(
        f"Resolved Proposals (page {result['page']}, "
        f"{len(result['items'])} of {result['total_count']}):"
    )
    for p in result["items"]:
        typer.echo(
            f"  {p['proposal_id']}: {law_label(p['law_type'])} {p['status']} at {p['resolved_at']}"
        )
    if result["has_more"]:
        typer.echo(f"  More: --page {result['page'] + 1}")


# Sweep command


@app.command()
def sweep(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Resolve proposals whose voting window has closed"""
    polity = get_polity(db)

    result = polity.sweep_expired()

    typer.echo(f"✓ Sweep completed: {result['sweep_id']}")
    typer.echo(f"  Processed: {result['processed']}")
    typer.echo(f"  Passed: {result['passed']}")
    typer.echo(f"  Rejected: {result['rejected']}")
    typer.echo(f"  Expired: {result['expired']}")
    if result["skipped"]:
        typer.echo(f"  Skipped: {result['skipped']}")
    if result["failures"]:
        typer.echo(f"  Failures: {len(result['failures'])}")
        for failure in result["failures"]:
            typer.echo(f"    - {failure['proposal_id']}: {failure['error']}")


# Alliance commands


@alliance_app.command("list")
def alliance_list(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    status: Annotated[
        Optional[AllianceStatus],
        typer.Option("--status", help="Filter by status"),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """List alliances of a community"""
    polity = get_polity(db)
    alliances = polity.list_alliances(community, status.value if status else None)

    if not alliances:
        typer.echo("No alliances")
        return

    typer.echo(f"Alliances ({len(alliances)}):")
    for a in alliances:
        other = (
            a["target_community_id"]
            if a["initiator_community_id"] == community
            else a["initiator_community_id"]
        )
        typer.echo(f"  {a['alliance_id']}: with {other} ({a['status']})")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
