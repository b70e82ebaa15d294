"""
SQL Community Store - Communities, ranks and law side effects in SQLite

Reference implementation of MembershipDirectory and CommunityMutations on
SQLModel tables, kept in the same SQLite file as the event log. Community
state is plain mutable rows: the governance history lives in the event log,
the effect of each law lives here.
"""

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlmodel import Field, Session, SQLModel, col, create_engine, func, or_, select

from polity.governance.models import GovernanceType, Rank
from polity.kernel.errors import CommunityNotFound
from polity.kernel.ids import generate_id
from polity.kernel.logging import get_logger
from polity.kernel.retry import retry_on_sqlite_lock
from polity.kernel.time import RealTimeProvider, TimeProvider

logger = get_logger(__name__)


class CommunityRecord(SQLModel, table=True):
    """A community and the state its laws act on"""

    __tablename__ = "communities"

    community_id: str = Field(primary_key=True)
    name: str
    governance_type: str = Field(default=GovernanceType.MONARCHY.value)
    work_tax_rate: float = 0.0
    import_tariff_rate: float = 0.0
    heir_id: str | None = None
    announcement_title: str | None = None
    announcement_content: str | None = None
    announcement_updated_at: datetime | None = None
    treasury_gold: float = 0.0
    currency_supply: float = 0.0
    created_at: datetime


class MembershipRecord(SQLModel, table=True):
    __tablename__ = "community_members"

    community_id: str = Field(primary_key=True, foreign_key="communities.community_id")
    user_id: str = Field(primary_key=True)
    rank_tier: int = Field(default=Rank.MEMBER, index=True)
    joined_at: datetime


class ConflictRecord(SQLModel, table=True):
    """A war declared by one community on another"""

    __tablename__ = "community_conflicts"

    conflict_id: str = Field(primary_key=True)
    initiator_community_id: str = Field(index=True)
    target_community_id: str = Field(index=True)
    status: str = "active"
    declared_at: datetime


class CurrencyIssuanceRecord(SQLModel, table=True):
    __tablename__ = "currency_issuances"

    issuance_id: str = Field(primary_key=True)
    community_id: str = Field(index=True)
    gold_burned: float
    conversion_rate: float
    currency_minted: float
    issued_at: datetime


class SQLCommunityStore:
    """
    SQLModel-backed community store

    Satisfies both MembershipDirectory and CommunityMutations. Sessions are
    short-lived, one per call, so the store can be shared between threads.
    """

    def __init__(
        self,
        db_path: str | Path,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.time_provider = time_provider or RealTimeProvider()
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False, "timeout": 5.0},
        )
        SQLModel.metadata.create_all(self.engine)

    # Administration

    @retry_on_sqlite_lock()
    def create_community(
        self,
        name: str,
        governance_type: str = GovernanceType.MONARCHY.value,
        *,
        community_id: str | None = None,
        treasury_gold: float = 0.0,
    ) -> dict[str, Any]:
        """
        Create a community

        Raises:
            ValueError: On an empty name or unknown governance type
        """
        if not name or not name.strip():
            raise ValueError("Community name must not be empty")
        record = CommunityRecord(
            community_id=community_id or generate_id(),
            name=name.strip(),
            governance_type=GovernanceType(governance_type.lower()).value,
            treasury_gold=treasury_gold,
            created_at=self.time_provider.now(),
        )
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            logger.info("Community created", community_id=record.community_id, name=record.name)
            return record.model_dump()

    @retry_on_sqlite_lock()
    def add_member(self, community_id: str, user_id: str, rank_tier: int = Rank.MEMBER) -> dict[str, Any]:
        """Add a member, or change the rank of an existing one"""
        with Session(self.engine) as session:
            self._require(session, community_id)
            member = session.get(MembershipRecord, (community_id, user_id))
            if member is None:
                member = MembershipRecord(
                    community_id=community_id,
                    user_id=user_id,
                    rank_tier=rank_tier,
                    joined_at=self.time_provider.now(),
                )
            else:
                member.rank_tier = rank_tier
            session.add(member)
            session.commit()
            session.refresh(member)
            return member.model_dump()

    def get_community(self, community_id: str) -> dict[str, Any] | None:
        with Session(self.engine) as session:
            record = session.get(CommunityRecord, community_id)
            return record.model_dump() if record else None

    def list_members(self, community_id: str) -> list[dict[str, Any]]:
        with Session(self.engine) as session:
            members = session.exec(
                select(MembershipRecord)
                .where(MembershipRecord.community_id == community_id)
                .order_by(MembershipRecord.rank_tier, MembershipRecord.user_id)
            ).all()
            return [m.model_dump() for m in members]

    def list_conflicts(self, community_id: str) -> list[dict[str, Any]]:
        with Session(self.engine) as session:
            conflicts = session.exec(
                select(ConflictRecord).where(
                    or_(
                        ConflictRecord.initiator_community_id == community_id,
                        ConflictRecord.target_community_id == community_id,
                    )
                )
            ).all()
            return [c.model_dump() for c in conflicts]

    def count_communities(self) -> int:
        with Session(self.engine) as session:
            return session.exec(select(func.count()).select_from(CommunityRecord)).one()

    # MembershipDirectory

    def community_exists(self, community_id: str) -> bool:
        with Session(self.engine) as session:
            return session.get(CommunityRecord, community_id) is not None

    def governance_type(self, community_id: str) -> str | None:
        with Session(self.engine) as session:
            record = session.get(CommunityRecord, community_id)
            return record.governance_type if record else None

    def rank_of(self, community_id: str, user_id: str) -> int | None:
        with Session(self.engine) as session:
            member = session.get(MembershipRecord, (community_id, user_id))
            return member.rank_tier if member else None

    def count_members_with_ranks(self, community_id: str, ranks: Iterable[int]) -> int:
        ranks = list(ranks)
        if not ranks:
            return 0
        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(MembershipRecord)
                .where(MembershipRecord.community_id == community_id)
                .where(col(MembershipRecord.rank_tier).in_(ranks))
            ).one()

    # CommunityMutations

    @retry_on_sqlite_lock()
    def set_announcement(self, community_id: str, title: str, content: str) -> None:
        with Session(self.engine) as session:
            record = self._require(session, community_id)
            record.announcement_title = title
            record.announcement_content = content
            record.announcement_updated_at = self.time_provider.now()
            session.add(record)
            session.commit()

    @retry_on_sqlite_lock()
    def create_conflict(self, initiator_community_id: str, target_community_id: str) -> str:
        with Session(self.engine) as session:
            self._require(session, initiator_community_id)
            self._require(session, target_community_id)
            conflict = ConflictRecord(
                conflict_id=generate_id(),
                initiator_community_id=initiator_community_id,
                target_community_id=target_community_id,
                declared_at=self.time_provider.now(),
            )
            session.add(conflict)
            session.commit()
            logger.info(
                "Conflict declared",
                conflict_id=conflict.conflict_id,
                initiator_community_id=initiator_community_id,
                target_community_id=target_community_id,
            )
            return conflict.conflict_id

    @retry_on_sqlite_lock()
    def designate_heir(self, community_id: str, user_id: str) -> None:
        with Session(self.engine) as session:
            record = self._require(session, community_id)
            if session.get(MembershipRecord, (community_id, user_id)) is None:
                raise ValueError(f"Heir {user_id} is not a member of community {community_id}")
            record.heir_id = user_id
            session.add(record)
            session.commit()

    @retry_on_sqlite_lock()
    def set_governance_type(self, community_id: str, governance_type: str) -> None:
        value = GovernanceType(governance_type.lower()).value
        with Session(self.engine) as session:
            record = self._require(session, community_id)
            record.governance_type = value
            session.add(record)
            session.commit()

    @retry_on_sqlite_lock()
    def set_work_tax_rate(self, community_id: str, rate: float) -> None:
        self._check_rate("work tax rate", rate)
        with Session(self.engine) as session:
            record = self._require(session, community_id)
            record.work_tax_rate = rate
            session.add(record)
            session.commit()

    @retry_on_sqlite_lock()
    def set_import_tariff_rate(self, community_id: str, rate: float) -> None:
        self._check_rate("import tariff rate", rate)
        with Session(self.engine) as session:
            record = self._require(session, community_id)
            record.import_tariff_rate = rate
            session.add(record)
            session.commit()

    @retry_on_sqlite_lock()
    def issue_currency(
        self, community_id: str, gold_amount: float, conversion_rate: float
    ) -> dict[str, Any]:
        """
        Burn treasury gold and mint currency at the given rate

        Raises:
            ValueError: If the treasury holds less gold than requested
        """
        if gold_amount <= 0 or conversion_rate <= 0:
            raise ValueError("Gold amount and conversion rate must be positive")
        with Session(self.engine) as session:
            record = self._require(session, community_id)
            if record.treasury_gold < gold_amount:
                raise ValueError(
                    f"Insufficient treasury gold: {record.treasury_gold} available, "
                    f"{gold_amount} requested"
                )
            minted = gold_amount * conversion_rate
            record.treasury_gold -= gold_amount
            record.currency_supply += minted
            issuance = CurrencyIssuanceRecord(
                issuance_id=generate_id(),
                community_id=community_id,
                gold_burned=gold_amount,
                conversion_rate=conversion_rate,
                currency_minted=minted,
                issued_at=self.time_provider.now(),
            )
            session.add(record)
            session.add(issuance)
            session.commit()
            return {
                "issuance_id": issuance.issuance_id,
                "gold_burned": gold_amount,
                "currency_minted": minted,
            }

    # Helpers

    @staticmethod
    def _require(session: Session, community_id: str) -> CommunityRecord:
        record = session.get(CommunityRecord, community_id)
        if record is None:
            raise CommunityNotFound(community_id)
        return record

    @staticmethod
    def _check_rate(name: str, rate: float) -> None:
        if not 0 <= rate <= 1:
            raise ValueError(f"{name} must be between 0 and 1, got {rate}")
