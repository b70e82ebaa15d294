"""
Pytest configuration and shared fixtures

Every test gets its own SQLite file and a frozen clock, so expiry windows and
cooldowns are stepped through deterministically.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from polity.community.store import SQLCommunityStore
from polity.governance.handlers import GovernanceCommandHandlers
from polity.governance.projections import GovernanceProjections
from polity.kernel.event_store import SQLiteEventStore
from polity.kernel.policy import GovernancePolicy
from polity.kernel.time import TestTimeProvider
from polity.polity import Polity
from tests.helpers import RecordingNotifier


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves two side files)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> GovernancePolicy:
    """Provide default governance policy for tests"""
    return GovernancePolicy()


@pytest.fixture
def community_store(temp_db: Path, test_time: TestTimeProvider) -> SQLCommunityStore:
    """Provide a community store sharing the test database"""
    return SQLCommunityStore(temp_db, time_provider=test_time)


@pytest.fixture
def handlers(test_time: TestTimeProvider, policy: GovernancePolicy) -> GovernanceCommandHandlers:
    """Handlers are stateless: they take projections as parameters"""
    return GovernanceCommandHandlers(test_time, policy)


@pytest.fixture
def projections() -> GovernanceProjections:
    return GovernanceProjections()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def polity(
    temp_db: Path,
    test_time: TestTimeProvider,
    policy: GovernancePolicy,
    notifier: RecordingNotifier,
) -> Polity:
    """Provide a fully wired engine on the test database and clock"""
    return Polity(temp_db, policy=policy, time_provider=test_time, notifier=notifier)
