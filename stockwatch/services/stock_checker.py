"""Single-URL stock check: reachability, caches, pooled render, detection.

Steps, each able to short-circuit:
  1. cached "unreachable" verdict  -> error outcome, no probe, no session
  2. fresh availability snapshot   -> cached verdict, no session
  3. HEAD probe (if reachability not freshly known) -> cache it, error if down
  4. lease a pooled browser session (pool busy -> error outcome)
  5. render the page; a load timeout is tolerated, partial DOM is often enough
  6. run the detection pipeline
  7. store the snapshot; the session is released on every exit path

Check-side failures never escape ``StockChecker.check``: they come back as a
``CheckOutcome`` with ``available=False`` and an error string.
"""

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from stockwatch.automation.detection import KEY_ELEMENT_SELECTOR, DetectionPipeline, Verdict
from stockwatch.automation.session_pool import SessionPool
from stockwatch.core.exceptions import CheckError, DetectionError, RenderTimeoutError, UnreachableError
from stockwatch.services.result_cache import ResultCache

logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    available: bool
    latency_ms: int
    error: str | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Reachability probe
# ---------------------------------------------------------------------------


class HttpProber:
    """Header-only reachability probe. 2xx and 3xx count as reachable."""

    def __init__(
        self,
        timeout: float = 3.0,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.headers = {"User-Agent": user_agent} if user_agent else {}
        self.transport = transport

    async def is_reachable(self, url: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                transport=self.transport,
            ) as client:
                resp = await client.head(url)
        except httpx.HTTPError as e:
            logger.debug(f"Reachability probe failed for {url}: {e}")
            return False
        return 200 <= resp.status_code < 400


# ---------------------------------------------------------------------------
# Page rendering
# ---------------------------------------------------------------------------


@dataclass
class RenderResult:
    title: str
    timed_out: bool

    def fingerprint(self, url: str) -> str:
        return hashlib.sha1(f"{self.title}|{url}".encode()).hexdigest()[:16]


class PageRenderer:
    """Navigate a pooled page and wait, within bounds, for the buy button area to appear."""

    def __init__(
        self,
        page_load_timeout: float = 10.0,
        smart_wait_timeout: float = 5.0,
        settle_delay: float = 0.5,
        short_page_threshold: int = 5000,
        short_page_extra_wait: float = 2.0,
    ):
        self.page_load_timeout = page_load_timeout
        self.smart_wait_timeout = smart_wait_timeout
        self.settle_delay = settle_delay
        self.short_page_threshold = short_page_threshold
        self.short_page_extra_wait = short_page_extra_wait

    async def render(self, page, url: str) -> RenderResult:
        timed_out = False
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.page_load_timeout * 1000)
        except PlaywrightTimeoutError:
            logger.warning(f"Page load timed out after {self.page_load_timeout}s, using partial DOM: {url}")
            timed_out = True

        try:
            await page.wait_for_selector(
                KEY_ELEMENT_SELECTOR, state="attached", timeout=self.smart_wait_timeout * 1000
            )
        except PlaywrightTimeoutError:
            logger.debug(f"Key elements not seen within {self.smart_wait_timeout}s: {url}")

        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)

        title = await page.title()
        if not title or len(await page.content()) < self.short_page_threshold:
            # Looks incompletely loaded, give client-side rendering a little longer
            await asyncio.sleep(self.short_page_extra_wait)
            title = await page.title()

        return RenderResult(title=title or "", timed_out=timed_out)


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------


class StockChecker:
    def __init__(
        self,
        pool: SessionPool,
        cache: ResultCache,
        prober: HttpProber,
        pipeline: DetectionPipeline,
        renderer: PageRenderer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pool = pool
        self.cache = cache
        self.prober = prober
        self.pipeline = pipeline
        self.renderer = renderer or PageRenderer()
        self._clock = clock

    async def check(self, url: str) -> CheckOutcome:
        started = self._clock()
        try:
            available, from_cache = await self._run(url)
        except CheckError as e:
            logger.warning(f"Stock check failed for {url}: {e}", extra={"url": url})
            return CheckOutcome(available=False, latency_ms=self._elapsed_ms(started), error=str(e))
        except Exception as e:
            logger.error(f"Unexpected error checking {url}: {e}", exc_info=True, extra={"url": url})
            return CheckOutcome(
                available=False,
                latency_ms=self._elapsed_ms(started),
                error=f"check failed: {e}",
            )

        latency_ms = self._elapsed_ms(started)
        logger.debug(
            f"Checked {url}: available={available} in {latency_ms}ms"
            f"{' (cached)' if from_cache else ''}"
        )
        return CheckOutcome(available=available, latency_ms=latency_ms, from_cache=from_cache)

    async def _run(self, url: str) -> tuple[bool, bool]:
        reachable, reachable_fresh = self.cache.get_reachable(url)
        if reachable_fresh and reachable is False:
            raise UnreachableError(url, "unreachable (cached)")

        snapshot, snapshot_fresh = self.cache.get_snapshot(url)
        if snapshot_fresh and snapshot is not None:
            return snapshot.available, True

        if not reachable_fresh:
            reachable = await self.prober.is_reachable(url)
            self.cache.put_reachable(url, reachable)
            if not reachable:
                raise UnreachableError(url)

        async with self.pool.lease() as session:
            rendered = await self.renderer.render(session.page, url)
            try:
                verdict = await self.pipeline.detect(session.page)
            except DetectionError as e:
                if rendered.timed_out:
                    raise RenderTimeoutError(f"render timed out and detection failed: {e}") from e
                raise

        available = verdict is Verdict.FOUND
        self.cache.put_snapshot(url, available, rendered.fingerprint(url))
        return available, False

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


# ---------------------------------------------------------------------------
# Benchmark
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkReport:
    iterations: int
    success_count: int
    error_count: int
    average_ms: float
    min_ms: int
    max_ms: int

    @property
    def success_rate(self) -> float:
        if not self.iterations:
            return 0.0
        return self.success_count / self.iterations * 100


async def run_benchmark(
    checker: StockChecker,
    url: str,
    iterations: int = 3,
    pause_seconds: float = 1.0,
) -> BenchmarkReport:
    """Run ``iterations`` sequential checks of one URL and summarize latency."""
    logger.info(f"Starting benchmark for {url} with {iterations} iterations")
    latencies: list[int] = []
    successes = 0
    errors = 0

    for i in range(iterations):
        outcome = await checker.check(url)
        latencies.append(outcome.latency_ms)
        if outcome.ok:
            successes += 1
        else:
            errors += 1
        logger.debug(
            f"Benchmark iteration {i + 1}: {outcome.latency_ms}ms, "
            f"{'ERROR' if not outcome.ok else ('IN_STOCK' if outcome.available else 'OUT_OF_STOCK')}"
        )
        if pause_seconds and i < iterations - 1:
            await asyncio.sleep(pause_seconds)

    report = BenchmarkReport(
        iterations=iterations,
        success_count=successes,
        error_count=errors,
        average_ms=sum(latencies) / iterations if iterations else 0.0,
        min_ms=min(latencies, default=0),
        max_ms=max(latencies, default=0),
    )
    logger.info(
        f"Benchmark finished for {url}: {report.success_count}/{report.iterations} ok, "
        f"avg {report.average_ms:.1f}ms"
    )
    return report
