"""Relational persistence for targets and their check history."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockwatch.core.exceptions import PersistenceError
from stockwatch.models.target import CheckRecord, Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetSnapshot:
    """Read-only view of a target handed to the scheduler for one cycle."""

    id: int
    product_id: str
    url: str
    name: str
    owner_id: str
    active: bool = True
    last_known_available: bool | None = False

    @classmethod
    def from_model(cls, target: Target) -> "TargetSnapshot":
        return cls(
            id=target.id,
            product_id=target.product_id,
            url=target.url,
            name=target.name,
            owner_id=target.owner_id,
            active=target.active,
            last_known_available=target.last_known_available,
        )


@dataclass(frozen=True)
class CheckResult:
    """Mutations produced by one check, to be persisted as a unit."""

    target_id: int
    available: bool
    latency_ms: int
    checked_at: datetime
    error: str | None = None
    changed: bool = False

    @property
    def became_available(self) -> bool:
        return self.changed and self.available and self.error is None


@asynccontextmanager
async def _persistence_errors(action: str) -> AsyncIterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Database error while trying to {action}: {e}")
        raise PersistenceError(f"Could not {action}") from e


class TargetRepository:
    """Query helpers over one AsyncSession. Callers own the transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, target_id: int) -> Target | None:
        async with _persistence_errors("load target"):
            return await self.db.get(Target, target_id)

    async def list_active_targets(self) -> list[Target]:
        async with _persistence_errors("list active targets"):
            result = await self.db.execute(
                select(Target).where(Target.active.is_(True)).order_by(Target.id)
            )
            return list(result.scalars().all())

    async def list_by_owner(self, owner_id: str) -> list[Target]:
        async with _persistence_errors("list targets"):
            result = await self.db.execute(
                select(Target)
                .where(Target.active.is_(True), Target.owner_id == owner_id)
                .order_by(Target.created_at.desc(), Target.id.desc())
            )
            return list(result.scalars().all())

    async def find_by_url(self, url: str) -> Target | None:
        async with _persistence_errors("look up target"):
            result = await self.db.execute(select(Target).where(Target.url == url))
            return result.scalar_one_or_none()

    async def find_by_identifier_or_url(self, identifier: str) -> Target | None:
        """Match on product id or URL, preferring active and then most recent rows."""
        async with _persistence_errors("look up target"):
            result = await self.db.execute(
                select(Target)
                .where(or_(Target.product_id == identifier, Target.url == identifier))
                .order_by(Target.active.desc(), Target.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def save(self, target: Target) -> Target:
        async with _persistence_errors("save target"):
            self.db.add(target)
            await self.db.flush()
            return target

    async def insert(self, record: CheckRecord) -> CheckRecord:
        async with _persistence_errors("record check"):
            self.db.add(record)
            await self.db.flush()
            return record

    async def latest_checks(self, target_id: int, limit: int = 10) -> list[CheckRecord]:
        async with _persistence_errors("load check history"):
            result = await self.db.execute(
                select(CheckRecord)
                .where(CheckRecord.target_id == target_id)
                .order_by(CheckRecord.checked_at.desc(), CheckRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_active(self) -> tuple[int, int]:
        """Return (active targets, of which currently available)."""
        async with _persistence_errors("count targets"):
            total = await self.db.scalar(
                select(func.count()).select_from(Target).where(Target.active.is_(True))
            )
            in_stock = await self.db.scalar(
                select(func.count())
                .select_from(Target)
                .where(Target.active.is_(True), Target.last_known_available.is_(True))
            )
            return total or 0, in_stock or 0


class SqlTargetStore:
    """Scheduler-facing store: snapshots in, one short transaction per check out."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_active_targets(self) -> list[TargetSnapshot]:
        async with self.session_factory() as db:
            targets = await TargetRepository(db).list_active_targets()
            return [TargetSnapshot.from_model(t) for t in targets]

    async def save_check(self, result: CheckResult) -> None:
        async with self.session_factory() as db:
            repo = TargetRepository(db)
            target = await repo.get(result.target_id)
            if target is None:
                logger.warning(
                    f"Target {result.target_id} disappeared before its check was saved",
                    extra={"target_id": result.target_id},
                )
                return

            target.last_checked_at = result.checked_at
            if result.error:
                target.last_error = result.error
            else:
                target.last_known_available = result.available
                target.last_error = None

            await repo.insert(
                CheckRecord(
                    target_id=target.id,
                    available=result.available,
                    latency_ms=result.latency_ms,
                    error=result.error,
                    changed=result.changed,
                    checked_at=result.checked_at,
                )
            )
            async with _persistence_errors("commit check"):
                await db.commit()
