"""Target management operations behind the API: add, remove, manual check, stats."""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.core.exceptions import (
    DuplicateTargetError,
    InvalidTargetUrlError,
    OwnershipError,
    PersistenceError,
    TargetInactiveError,
    TargetNotFoundError,
    TargetValidationError,
)
from stockwatch.models.target import Target
from stockwatch.services.check_runner import CheckRunner
from stockwatch.services.priority_scheduler import PriorityScheduler
from stockwatch.services.repository import CheckResult, TargetRepository, TargetSnapshot
from stockwatch.services.url_utils import (
    extract_product_id,
    extract_product_name,
    is_valid_product_url,
    normalize_url,
)

logger = logging.getLogger(__name__)


@dataclass
class MonitoringStats:
    total_targets: int
    in_stock: int
    out_of_stock: int
    tiers: dict[str, int]


def validate_target_url(url: str, allowed_host: str = "") -> tuple[str, str]:
    """Return (normalized url, product id) or raise a validation error."""
    if not is_valid_product_url(url, allowed_host):
        raise InvalidTargetUrlError(
            "Invalid product URL. Expected https://<host>/<region>/products/<id>/<name>"
        )
    normalized = normalize_url(url)
    product_id = extract_product_id(normalized)
    if product_id is None:
        raise TargetValidationError("Could not extract a product ID from the URL")
    return normalized, product_id


async def _commit(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateTargetError("Product with this URL is already being monitored") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Database error while trying to {action}: {e}")
        raise PersistenceError(f"Could not {action}") from e


async def add_target(
    db: AsyncSession,
    runner: CheckRunner,
    url: str,
    owner_id: str,
    name: str | None = None,
    allowed_host: str = "",
) -> tuple[Target, CheckResult]:
    """Start monitoring a product URL and check it once straight away.

    A URL that was monitored before and later removed is reactivated for the
    new owner instead of inserted again.
    """
    normalized, product_id = validate_target_url(url, allowed_host)
    display_name = (name or "").strip() or extract_product_name(normalized) or product_id

    repo = TargetRepository(db)
    target = await repo.find_by_url(normalized)
    if target is not None and target.active:
        raise DuplicateTargetError("Product with this URL is already being monitored")

    if target is None:
        target = Target(
            product_id=product_id,
            url=normalized,
            name=display_name,
            owner_id=owner_id,
            active=True,
            last_known_available=False,
        )
    else:
        logger.info(f"Reactivating previously removed target {target.id}", extra={"target_id": target.id})
        target.active = True
        target.owner_id = owner_id
        target.name = display_name
        target.last_error = None
        runner.scheduler.forget(target.id)

    await repo.save(target)
    # The first check persists through its own session, so the row must be visible
    await _commit(db, "add target")
    logger.info(f"Added target {target.id} ({display_name}) for owner {owner_id}", extra={"target_id": target.id})

    result = await runner.run(TargetSnapshot.from_model(target))
    await db.refresh(target)
    return target, result


async def find_target(db: AsyncSession, identifier: str) -> Target:
    identifier = identifier.strip()
    if identifier.startswith("http"):
        identifier = normalize_url(identifier)
    target = await TargetRepository(db).find_by_identifier_or_url(identifier)
    if target is None:
        raise TargetNotFoundError(f"No monitored product matches {identifier}")
    return target


async def get_owned_active_target(db: AsyncSession, identifier: str, owner_id: str) -> Target:
    target = await find_target(db, identifier)
    if target.owner_id != owner_id:
        raise OwnershipError("You can only manage products you added")
    if not target.active:
        raise TargetInactiveError("This product is no longer being monitored")
    return target


async def remove_target(
    db: AsyncSession,
    scheduler: PriorityScheduler,
    identifier: str,
    owner_id: str,
) -> Target:
    """Deactivate a target. History is kept; scheduling state is dropped."""
    target = await find_target(db, identifier)
    if target.owner_id != owner_id:
        raise OwnershipError("You can only remove products you added")
    if not target.active:
        raise TargetInactiveError("This product is no longer being monitored")

    target.active = False
    await TargetRepository(db).save(target)
    await _commit(db, "remove target")
    scheduler.forget(target.id)
    logger.info(f"Removed target {target.id} for owner {owner_id}", extra={"target_id": target.id})
    return target


async def check_target_now(
    db: AsyncSession,
    runner: CheckRunner,
    identifier: str,
    owner_id: str,
) -> tuple[Target, CheckResult]:
    """Manual check: skips the due-time filter, still uses the caches and session pool."""
    target = await get_owned_active_target(db, identifier, owner_id)
    result = await runner.run_exclusive(TargetSnapshot.from_model(target))
    await db.refresh(target)
    return target, result


async def build_stats(db: AsyncSession, scheduler: PriorityScheduler) -> MonitoringStats:
    repo = TargetRepository(db)
    total, in_stock = await repo.count_active()
    active_ids = [t.id for t in await repo.list_active_targets()]
    return MonitoringStats(
        total_targets=total,
        in_stock=in_stock,
        out_of_stock=total - in_stock,
        tiers=scheduler.tier_distribution(active_ids),
    )
