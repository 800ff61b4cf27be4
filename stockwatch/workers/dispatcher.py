"""Dispatch cycle: periodically fan due targets out to a bounded worker pool.

Architecture notes:
- A single ticker task fires ``run_once`` at a fixed rate. Cycles are spawned
  as independent tasks, so a slow cycle never delays the next firing and
  cycles may overlap.
- The worker semaphore is shared by all cycles; the session pool behind the
  checker is the real ceiling on concurrent renders.
- A target whose check is still in flight from an earlier cycle is skipped
  rather than dispatched twice.
- Every unit is isolated: an exception in one target's check is logged and
  recorded as an error check, and never reaches sibling units or the cycle.
"""

import asyncio
import contextlib
import itertools
import logging
import time
from dataclasses import dataclass

from stockwatch.core.exceptions import PersistenceError
from stockwatch.services.check_runner import CheckRunner, CheckStore
from stockwatch.services.priority_scheduler import PriorityScheduler
from stockwatch.services.repository import CheckResult, TargetSnapshot

logger = logging.getLogger(__name__)


@dataclass
class CycleSummary:
    cycle_id: int
    total: int = 0
    due: int = 0
    skipped_in_flight: int = 0
    checked: int = 0
    available: int = 0
    errors: int = 0
    duration_ms: int = 0


class DispatchCycle:
    def __init__(
        self,
        store: CheckStore,
        scheduler: PriorityScheduler,
        runner: CheckRunner,
        worker_count: int = 5,
        interval_seconds: float = 60.0,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.store = store
        self.scheduler = scheduler
        self.runner = runner
        self.worker_count = worker_count
        self.interval_seconds = interval_seconds

        self._workers = asyncio.Semaphore(worker_count)
        self._cycles: set[asyncio.Task] = set()
        self._ticker: asyncio.Task | None = None
        self._cycle_ids = itertools.count(1)

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def in_flight(self) -> int:
        return self.runner.in_flight

    async def run_once(self) -> CycleSummary:
        cycle_id = next(self._cycle_ids)
        summary = CycleSummary(cycle_id=cycle_id)
        started = time.monotonic()

        try:
            targets = await self.store.list_active_targets()
        except PersistenceError as e:
            logger.error(f"Cycle {cycle_id}: could not load active targets: {e}", extra={"cycle_id": cycle_id})
            return summary

        due: list[TargetSnapshot] = []
        for target in targets:
            if self.runner.is_in_flight(target.id):
                summary.skipped_in_flight += 1
            elif self.scheduler.is_due(target) and self.runner.try_claim(target.id):
                due.append(target)

        summary.total = len(targets)
        summary.due = len(due)
        logger.info(
            f"Cycle {cycle_id} started: {len(due)}/{len(targets)} targets due"
            f"{f', {summary.skipped_in_flight} still in flight' if summary.skipped_in_flight else ''}",
            extra={"cycle_id": cycle_id},
        )

        results = await asyncio.gather(*(self._run_unit(t, cycle_id) for t in due))

        for result in results:
            if result is None:
                summary.errors += 1
                continue
            summary.checked += 1
            if result.error:
                summary.errors += 1
            elif result.available:
                summary.available += 1

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Cycle {cycle_id} complete: {summary.checked} checked, {summary.available} available, "
            f"{summary.errors} errors in {summary.duration_ms}ms",
            extra={"cycle_id": cycle_id},
        )
        return summary

    async def _run_unit(self, target: TargetSnapshot, cycle_id: int) -> CheckResult | None:
        log_extra = {"target_id": target.id, "cycle_id": cycle_id}
        try:
            async with self._workers:
                try:
                    return await self.runner.run(target)
                except PersistenceError as e:
                    logger.error(f"Could not save check for target {target.id}: {e}", extra=log_extra)
                    return None
                except Exception as e:
                    logger.error(f"Check of target {target.id} failed: {e}", exc_info=True, extra=log_extra)
                    error = f"check failed: {e}"

                try:
                    return await self.runner.record_failure(target, error)
                except Exception as inner:
                    logger.error(
                        f"Could not record failed check for target {target.id}: {inner}", extra=log_extra
                    )
                    return None
        finally:
            self.runner.release_claim(target.id)

    # ------------------------------------------------------------------
    # Ticker
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._ticker = asyncio.create_task(self._tick(), name="dispatch-ticker")
        logger.info(f"Dispatch ticker started (every {self.interval_seconds:.0f}s, {self.worker_count} workers)")

    async def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time()
        while True:
            self._spawn_cycle()
            next_fire += self.interval_seconds
            await asyncio.sleep(max(0.0, next_fire - loop.time()))

    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self._guarded_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _guarded_cycle(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("Dispatch cycle crashed")

    async def stop(self, drain_timeout: float = 30.0) -> None:
        """Stop firing, wait up to ``drain_timeout`` for running cycles, abandon the rest."""
        if self._ticker is not None:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None

        pending = set(self._cycles)
        if not pending:
            return

        logger.info(f"Waiting up to {drain_timeout:.0f}s for {len(pending)} running cycles")
        _, still_running = await asyncio.wait(pending, timeout=drain_timeout)
        if still_running:
            logger.warning(f"Abandoning {len(still_running)} cycles still running after drain timeout")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
