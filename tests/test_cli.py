"""
CLI integration tests

Drives every command group through Typer's CliRunner against a fresh
database file.
"""

import json

import pytest
from typer.testing import CliRunner

from polity.cli.main import app


@pytest.fixture
def runner():
    """Typer CLI test runner"""
    return CliRunner()


@pytest.fixture
def db(runner, tmp_path):
    db_path = tmp_path / "polity.db"
    result = runner.invoke(app, ["init", "--db", str(db_path)])
    assert result.exit_code == 0
    return db_path


def last_token(output: str, prefix: str) -> str:
    """Value after `prefix` on the first matching output line"""
    for line in output.splitlines():
        if line.startswith(prefix):
            return line.split(":", 1)[1].strip()
    raise AssertionError(f"{prefix!r} not in output:\n{output}")


def create_community(runner, db, name: str, governance: str = "monarchy") -> str:
    result = runner.invoke(
        app, ["community", "create", "--name", name, "--governance", governance, "--db", str(db)]
    )
    assert result.exit_code == 0, result.output
    community_id = last_token(result.output, "✓ Created community")
    prefix = name.lower()
    for user, rank in ((f"{prefix}-sovereign", 0), (f"{prefix}-secretary", 1), (f"{prefix}-member", 10)):
        added = runner.invoke(
            app,
            ["community", "add-member", "--community", community_id, "--user", user,
             "--rank", str(rank), "--db", str(db)],
        )
        assert added.exit_code == 0, added.output
    return community_id


def propose(runner, db, community_id: str, user: str, law_type: str, metadata: dict):
    return runner.invoke(
        app,
        ["law", "propose", "--community", community_id, "--user", user, "--type", law_type,
         "--metadata", json.dumps(metadata), "--db", str(db)],
    )


def test_init_creates_database(runner, tmp_path) -> None:
    db_path = tmp_path / "new.db"

    result = runner.invoke(app, ["init", "--db", str(db_path)])

    assert result.exit_code == 0
    assert db_path.exists()
    assert "Initialized Polity database" in result.output


def test_init_refuses_existing_database(runner, db) -> None:
    result = runner.invoke(app, ["init", "--db", str(db)])
    assert result.exit_code == 1


def test_missing_database(runner, tmp_path) -> None:
    result = runner.invoke(app, ["sweep", "--db", str(tmp_path / "absent.db")])

    assert result.exit_code == 1
    assert "Database not found" in result.output


class TestCommunityCommands:
    def test_create_and_show(self, runner, db) -> None:
        community_id = create_community(runner, db, "North")

        result = runner.invoke(app, ["community", "show", "--community", community_id, "--db", str(db)])

        assert result.exit_code == 0
        assert "Governance: monarchy" in result.output
        assert "north-sovereign (rank 0)" in result.output

    def test_show_json(self, runner, db) -> None:
        community_id = create_community(runner, db, "North")

        result = runner.invoke(
            app, ["community", "show", "--community", community_id, "--json", "--db", str(db)]
        )

        data = json.loads(result.stdout)
        assert data["community_id"] == community_id
        assert len(data["members"]) == 3

    def test_unknown_governance(self, runner, db) -> None:
        result = runner.invoke(
            app, ["community", "create", "--name", "X", "--governance", "anarchy", "--db", str(db)]
        )
        assert result.exit_code == 1

    def test_add_member_unknown_community(self, runner, db) -> None:
        result = runner.invoke(
            app, ["community", "add-member", "--community", "nowhere", "--user", "a", "--db", str(db)]
        )
        assert result.exit_code == 1
        assert "nowhere" in result.output


class TestLawCommands:
    def test_instant_law(self, runner, db) -> None:
        community_id = create_community(runner, db, "North")

        result = propose(runner, db, community_id, "north-sovereign", "WORK_TAX", {"tax_rate": 0.2})

        assert result.exit_code == 0, result.output
        assert "Status: passed" in result.output
        shown = runner.invoke(
            app, ["community", "show", "--community", community_id, "--json", "--db", str(db)]
        )
        assert json.loads(shown.stdout)["work_tax_rate"] == 0.2

    def test_vote_resolves(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        south = create_community(runner, db, "South")
        proposed = propose(runner, db, north, "north-sovereign", "DECLARE_WAR", {"target_community_id": south})
        proposal_id = last_token(proposed.output, "✓ Proposed DECLARE_WAR")

        active = runner.invoke(app, ["law", "active", "--community", north, "--db", str(db)])
        assert f"{proposal_id}: Declare War" in active.output

        voted = runner.invoke(
            app,
            ["law", "vote", "--proposal", proposal_id, "--user", "north-sovereign", "--vote", "yes",
             "--db", str(db)],
        )
        assert voted.exit_code == 0, voted.output
        assert "Vote recorded: yes" in voted.output
        assert "Proposal status: passed" in voted.output

        shown = runner.invoke(app, ["law", "show", "--proposal", proposal_id, "--json", "--db", str(db)])
        assert json.loads(shown.stdout)["status"] == "passed"

    def test_double_vote_fails(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        south = create_community(runner, db, "South")
        proposed = propose(runner, db, north, "north-sovereign", "DECLARE_WAR", {"target_community_id": south})
        proposal_id = last_token(proposed.output, "✓ Proposed DECLARE_WAR")
        args = ["law", "vote", "--proposal", proposal_id, "--user", "north-secretary", "--vote", "yes",
                "--db", str(db)]

        assert runner.invoke(app, args).exit_code == 0
        again = runner.invoke(app, args)

        assert again.exit_code == 1
        assert "already voted" in again.output

    def test_fast_track(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        proposed = propose(runner, db, north, "north-sovereign", "PROPOSE_HEIR", {"target_user_id": "north-member"})
        proposal_id = last_token(proposed.output, "✓ Proposed PROPOSE_HEIR")

        result = runner.invoke(
            app, ["law", "fast-track", "--proposal", proposal_id, "--user", "north-sovereign", "--db", str(db)]
        )

        assert result.exit_code == 0, result.output
        assert "Fast-tracked" in result.output

    def test_permission_denied(self, runner, db) -> None:
        north = create_community(runner, db, "North")

        result = propose(runner, db, north, "north-member", "WORK_TAX", {"tax_rate": 0.2})

        assert result.exit_code == 1

    def test_bad_metadata(self, runner, db) -> None:
        north = create_community(runner, db, "North")

        result = runner.invoke(
            app,
            ["law", "propose", "--community", north, "--user", "north-sovereign", "--type", "WORK_TAX",
             "--metadata", "[1, 2]", "--db", str(db)],
        )

        assert result.exit_code == 1
        assert "JSON object" in result.output

    def test_resolved_listing(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        propose(runner, db, north, "north-sovereign", "WORK_TAX", {"tax_rate": 0.2})
        propose(runner, db, north, "north-sovereign", "IMPORT_TARIFF", {"tariff_rate": 0.1})

        result = runner.invoke(
            app, ["law", "resolved", "--community", north, "--page-size", "1", "--json", "--db", str(db)]
        )

        data = json.loads(result.stdout)
        assert data["total_count"] == 2
        assert data["has_more"] is True
        assert len(data["items"]) == 1

    def test_no_active(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        result = runner.invoke(app, ["law", "active", "--community", north, "--db", str(db)])
        assert "No active proposals" in result.output


class TestSweepAndAlliances:
    def test_sweep_nothing_due(self, runner, db) -> None:
        result = runner.invoke(app, ["sweep", "--db", str(db)])

        assert result.exit_code == 0
        assert "Sweep completed" in result.output
        assert "Processed: 0" in result.output

    def test_alliance_request_listed(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        south = create_community(runner, db, "South")
        proposed = propose(runner, db, north, "north-sovereign", "CFC_ALLIANCE", {"target_community_id": south})
        proposal_id = last_token(proposed.output, "✓ Proposed CFC_ALLIANCE")
        runner.invoke(
            app, ["law", "fast-track", "--proposal", proposal_id, "--user", "north-sovereign", "--db", str(db)]
        )

        result = runner.invoke(
            app,
            ["alliance", "list", "--community", south, "--status", "pending_target_approval", "--db", str(db)],
        )

        assert result.exit_code == 0
        assert f"with {north} (pending_target_approval)" in result.output

    def test_no_alliances(self, runner, db) -> None:
        north = create_community(runner, db, "North")
        result = runner.invoke(app, ["alliance", "list", "--community", north, "--db", str(db)])
        assert "No alliances" in result.output


def test_resolved_listing_shows_labels(runner, db) -> None:
    north = create_community(runner, db, "North")
    propose(runner, db, north, "north-sovereign", "IMPORT_TARIFF", {"tariff_rate": 0.1})

    result = runner.invoke(app, ["law", "resolved", "--community", north, "--db", str(db)])

    assert result.exit_code == 0
    assert "Import Tariff passed" in result.output
