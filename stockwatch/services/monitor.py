"""Wires the monitoring runtime together and owns its lifecycle."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockwatch.automation.browser_manager import BrowserSessionFactory
from stockwatch.automation.detection import DetectionPipeline
from stockwatch.automation.session_pool import SessionPool
from stockwatch.config import Settings
from stockwatch.services.check_runner import CheckRunner, CheckStore
from stockwatch.services.notification_service import StockAlertNotifier
from stockwatch.services.priority_scheduler import PriorityScheduler
from stockwatch.services.repository import SqlTargetStore
from stockwatch.services.result_cache import ResultCache
from stockwatch.services.stock_checker import HttpProber, PageRenderer, StockChecker
from stockwatch.workers.dispatcher import DispatchCycle

logger = logging.getLogger(__name__)


@dataclass
class Monitor:
    pool: SessionPool
    cache: ResultCache
    checker: StockChecker
    scheduler: PriorityScheduler
    store: CheckStore
    runner: CheckRunner
    dispatcher: DispatchCycle
    browser: BrowserSessionFactory | None = None
    drain_timeout: float = 30.0

    async def start(self, warm_up: bool = True) -> None:
        if warm_up:
            await self.pool.warm_up()
        self.dispatcher.start()
        logger.info("Stock monitor started")

    async def stop(self) -> None:
        """Drain in-flight cycles (bounded), then close every browser session."""
        await self.dispatcher.stop(self.drain_timeout)
        await self.pool.shutdown()
        if self.browser is not None:
            await self.browser.close()
        logger.info("Stock monitor stopped")


def build_monitor(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> Monitor:
    browser = BrowserSessionFactory(
        headless=settings.browser_headless,
        user_agent=settings.browser_user_agent or None,
        proxy=settings.browser_proxy_url or None,
    )
    pool = SessionPool(
        browser,
        size=settings.session_pool_size,
        warm_size=settings.session_warm_size,
        acquire_timeout=settings.session_acquire_timeout,
    )
    cache = ResultCache(
        snapshot_ttl=settings.snapshot_cache_ttl,
        reachability_ttl=settings.reachability_cache_ttl,
        max_entries=settings.cache_max_entries,
    )
    checker = StockChecker(
        pool=pool,
        cache=cache,
        prober=HttpProber(timeout=settings.http_check_timeout, user_agent=settings.browser_user_agent or None),
        pipeline=DetectionPipeline(
            keyword=settings.detector_keyword,
            selector_hint=settings.detector_selector,
            unavailable_phrases=settings.unavailable_phrases,
        ),
        renderer=PageRenderer(
            page_load_timeout=settings.page_load_timeout,
            smart_wait_timeout=settings.smart_wait_timeout,
            settle_delay=settings.settle_delay,
            short_page_threshold=settings.short_page_threshold,
            short_page_extra_wait=settings.short_page_extra_wait,
        ),
    )
    scheduler = PriorityScheduler(tier_unit_seconds=settings.tier_unit_seconds)
    store = SqlTargetStore(session_factory)
    notifier = StockAlertNotifier(
        notification_type=settings.notification_type,
        discord_webhook_url=settings.discord_webhook_url,
    )
    runner = CheckRunner(checker=checker, scheduler=scheduler, store=store, notifier=notifier)
    dispatcher = DispatchCycle(
        store=store,
        scheduler=scheduler,
        runner=runner,
        worker_count=settings.worker_count,
        interval_seconds=settings.dispatch_interval_seconds,
    )
    return Monitor(
        pool=pool,
        cache=cache,
        checker=checker,
        scheduler=scheduler,
        store=store,
        runner=runner,
        dispatcher=dispatcher,
        browser=browser,
        drain_timeout=settings.shutdown_drain_timeout,
    )
