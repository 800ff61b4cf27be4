"""Bounded pool of reusable browser sessions.

Usage:
    pool = SessionPool(BrowserSessionFactory(), size=3)
    await pool.warm_up()

    async with pool.lease() as session:
        await session.page.goto(url)

    await pool.shutdown()

The number of concurrently leased sessions is capped by a semaphore holding
``size`` permits, not by the idle queue. A lease that gets a permit but finds no
idle session creates one on demand; every session handed out is health-checked
first and replaced if dead. ``lease()`` returns the permit on every exit path.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from stockwatch.core.exceptions import PoolClosedError, PoolExhaustedError

logger = logging.getLogger(__name__)


class Session(Protocol):
    async def ping(self) -> None: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...


class SessionFactory(Protocol):
    async def create(self) -> Session: ...


@dataclass
class PoolStats:
    size: int
    idle: int
    leased: int
    total_leases: int
    sessions_created: int
    sessions_replaced: int


class SessionPool:
    def __init__(
        self,
        factory: SessionFactory,
        size: int = 3,
        warm_size: int | None = None,
        acquire_timeout: float = 15.0,
    ):
        if size < 1:
            raise ValueError("Session pool size must be at least 1")
        self.factory = factory
        self.size = size
        self.warm_size = size if warm_size is None else min(warm_size, size)
        self.acquire_timeout = acquire_timeout

        self._permits = asyncio.BoundedSemaphore(size)
        self._idle: asyncio.Queue = asyncio.Queue(maxsize=size)
        self._leased: dict[int, Session] = {}
        # Sessions this pool minted, to tell a repeated release from a foreign one
        self._minted: weakref.WeakSet = weakref.WeakSet()
        # Permits currently held by callers; each is given back at most once
        self._outstanding = 0
        self._closed = False

        # Stats (for monitoring and tests)
        self.total_leases = 0
        self.sessions_created = 0
        self.sessions_replaced = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def warm_up(self) -> int:
        """Pre-create warm sessions. Failures are logged; missing sessions are created on demand."""
        created = 0
        for i in range(self.warm_size):
            try:
                session = await self._create()
            except Exception as e:
                logger.error(f"Failed to create browser session {i + 1}/{self.warm_size}: {e}")
                continue
            self._idle.put_nowait(session)
            created += 1
        logger.info(f"Session pool warmed with {created}/{self.warm_size} sessions (capacity {self.size})")
        return created

    async def acquire(self, timeout: float | None = None) -> Session:
        """Lease a healthy session, waiting up to ``timeout`` seconds for a permit.

        Raises:
            PoolExhaustedError: no permit became free within the timeout
            PoolClosedError: the pool has been shut down
        """
        if self._closed:
            raise PoolClosedError("Session pool is shut down")

        timeout = self.acquire_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._permits.acquire(), timeout=timeout)
        except TimeoutError as exc:
            raise PoolExhaustedError(
                f"pool busy: no browser session free within {timeout:.1f}s"
            ) from exc

        try:
            if self._closed:
                raise PoolClosedError("Session pool is shut down")
            session = await self._take_healthy()
        except BaseException:
            self._permits.release()
            raise

        self._leased[id(session)] = session
        self._outstanding += 1
        self.total_leases += 1
        return session

    async def release(self, session: Session | None) -> None:
        """Return a lease's permit, recycling the session when it is one we handed out.

        ``None`` or a session this pool never minted still gives back one held
        permit. Releasing a pooled session that is not currently leased (a
        repeated release) is ignored, so no lease can return two permits.
        """
        if session is not None and self._leased.pop(id(session), None) is not None:
            try:
                await self._recycle(session)
            finally:
                self._return_permit()
            return

        if session is not None and self._is_minted(session):
            logger.warning("Ignoring release of a session that is not currently leased")
            return
        if session is not None:
            logger.warning("Releasing an unknown session, returning its permit only")
        self._return_permit()

    @asynccontextmanager
    async def lease(self, timeout: float | None = None) -> AsyncIterator[Session]:
        session = await self.acquire(timeout)
        try:
            yield session
        finally:
            await self.release(session)

    async def shutdown(self) -> None:
        """Stop leasing and close all idle sessions. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        closed = 0
        while not self._idle.empty():
            session = self._idle.get_nowait()
            await _close_quietly(session)
            closed += 1
        logger.info(f"Session pool shut down, closed {closed} idle sessions")

    def stats(self) -> PoolStats:
        return PoolStats(
            size=self.size,
            idle=self._idle.qsize(),
            leased=self._outstanding,
            total_leases=self.total_leases,
            sessions_created=self.sessions_created,
            sessions_replaced=self.sessions_replaced,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _create(self) -> Session:
        started = time.monotonic()
        session = await self.factory.create()
        self._minted.add(session)
        self.sessions_created += 1
        logger.debug(f"Created browser session in {(time.monotonic() - started) * 1000:.0f}ms")
        return session

    def _is_minted(self, session) -> bool:
        try:
            return session in self._minted
        except TypeError:
            return False

    def _return_permit(self) -> None:
        if self._outstanding == 0:
            logger.warning("Release without an outstanding lease, no permit returned")
            return
        self._outstanding -= 1
        self._permits.release()

    async def _take_healthy(self) -> Session:
        try:
            session = self._idle.get_nowait()
        except asyncio.QueueEmpty:
            logger.debug("No idle session available, creating one on demand")
            return await self._create()

        try:
            await session.ping()
            return session
        except Exception as e:
            logger.warning(f"Pooled session failed health check, replacing it: {e}")
            await _close_quietly(session)
            replacement = await self._create()
            self.sessions_replaced += 1
            return replacement

    async def _recycle(self, session: Session) -> None:
        if self._closed:
            await _close_quietly(session)
            return
        try:
            await session.reset()
        except Exception as e:
            logger.warning(f"Failed to reset session, discarding it: {e}")
            await _close_quietly(session)
            return
        try:
            self._idle.put_nowait(session)
        except asyncio.QueueFull:
            logger.debug("Idle pool full, closing returned session")
            await _close_quietly(session)


async def _close_quietly(session: Session) -> None:
    try:
        await session.close()
    except Exception:
        logger.debug("Ignoring error while closing browser session", exc_info=True)
