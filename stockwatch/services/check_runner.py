"""One unit of monitoring work: check a target, retune it, persist, notify."""

import logging
from datetime import UTC, datetime
from typing import Protocol

from stockwatch.core.exceptions import CheckInProgressError
from stockwatch.services.notification_service import StockAlertNotifier
from stockwatch.services.priority_scheduler import PriorityScheduler
from stockwatch.services.repository import CheckResult, TargetSnapshot
from stockwatch.services.stock_checker import CheckOutcome, StockChecker

logger = logging.getLogger(__name__)


class CheckStore(Protocol):
    async def list_active_targets(self) -> list[TargetSnapshot]: ...

    async def save_check(self, result: CheckResult) -> None: ...


class CheckRunner:
    def __init__(
        self,
        checker: StockChecker,
        scheduler: PriorityScheduler,
        store: CheckStore,
        notifier: StockAlertNotifier,
    ):
        self.checker = checker
        self.scheduler = scheduler
        self.store = store
        self.notifier = notifier
        # Targets with a check underway; one check per target at a time
        self._in_flight: set[int] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, target_id: int) -> bool:
        return target_id in self._in_flight

    def try_claim(self, target_id: int) -> bool:
        if target_id in self._in_flight:
            return False
        self._in_flight.add(target_id)
        return True

    def release_claim(self, target_id: int) -> None:
        self._in_flight.discard(target_id)

    async def run_exclusive(self, target: TargetSnapshot) -> CheckResult:
        """Run a check outside the dispatch cycle, refusing if one is already underway."""
        if not self.try_claim(target.id):
            raise CheckInProgressError(f"A check of {target.name} is already in progress")
        try:
            return await self.run(target)
        finally:
            self.release_claim(target.id)

    async def run(self, target: TargetSnapshot) -> CheckResult:
        """Check one target and hand the result to persistence and notification.

        Persistence errors propagate to the caller; notification errors never do.
        """
        outcome = await self.checker.check(target.url)
        return await self._complete(target, outcome)

    async def record_failure(self, target: TargetSnapshot, error: str) -> CheckResult:
        """Record a unit that blew up outside the checker as an error check."""
        return await self._complete(target, CheckOutcome(available=False, latency_ms=0, error=error))

    async def _complete(self, target: TargetSnapshot, outcome: CheckOutcome) -> CheckResult:
        self.scheduler.record_result(target, bool(outcome.available), errored=outcome.error is not None)

        changed = outcome.error is None and outcome.available != target.last_known_available
        result = CheckResult(
            target_id=target.id,
            available=outcome.available if outcome.error is None else False,
            latency_ms=outcome.latency_ms,
            checked_at=datetime.now(UTC),
            error=outcome.error,
            changed=changed,
        )

        if changed:
            logger.info(
                f"Stock status changed for {target.name}: "
                f"{'IN STOCK' if target.last_known_available else 'OUT OF STOCK'} -> "
                f"{'IN STOCK' if result.available else 'OUT OF STOCK'}",
                extra={"target_id": target.id, "url": target.url},
            )

        await self.store.save_check(result)

        if result.became_available:
            try:
                await self.notifier.notify_became_available(target)
            except Exception as e:
                logger.error(
                    f"Stock alert for target {target.id} failed: {e}",
                    extra={"target_id": target.id},
                )
        return result
