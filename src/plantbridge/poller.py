"""Poller: fixed-period read of all tags, snapshot building and publishing; never overlaps itself."""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from .errors import ConnectError, ReadError
from .session import PlcSession
from .types import PlantSnapshot, SessionState

logger = logging.getLogger(__name__)

Publisher = Callable[[PlantSnapshot], Awaitable[None]]

DEFAULT_ACTUATOR_TAGS = ("COMP1", "COMP2", "COMP3", "COMP4", "COMP5")


class Poller:
    """
    Drives Idle -> Reading -> Publishing|Faulted -> Idle every `interval` seconds.
    A tick still in flight when the timer fires makes that firing a skip.
    """

    def __init__(
        self,
        session: PlcSession,
        tags: Iterable[str],
        publish: Publisher,
        *,
        interval: float = 1.0,
        actuator_tags: Iterable[str] = DEFAULT_ACTUATOR_TAGS,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._session = session
        self._tags = tuple(tags)
        self._publish = publish
        self._interval = interval
        self._actuator_tags = tuple(t for t in actuator_tags if t in self._tags)
        self._busy = False
        self._stopped = asyncio.Event()
        self._outage = False
        self.skipped = 0
        self.ticks = 0
        self.latest = PlantSnapshot.degraded(self._tags, "PLC not connected yet")

    @property
    def tags(self) -> tuple[str, ...]:
        return self._tags

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def busy(self) -> bool:
        return self._busy

    async def tick(self) -> PlantSnapshot | None:
        """Run one read-publish cycle. Returns None when skipped because one is in flight."""
        if self._busy:
            self.skipped += 1
            logger.debug("Poll tick skipped: previous tick still running")
            return None
        self._busy = True
        try:
            snapshot = await self._read_snapshot()
            self.latest = snapshot
            self.ticks += 1
            try:
                await self._publish(snapshot)
            except Exception:
                logger.exception("Publishing snapshot failed")
            return snapshot
        finally:
            self._busy = False

    async def _read_snapshot(self) -> PlantSnapshot:
        if self._session.state is not SessionState.READY:
            try:
                await self._session.connect()
            except ConnectError as e:
                if not self._outage:
                    logger.warning("PLC unreachable, retrying every %.1fs: %s", self._interval, e)
                else:
                    logger.debug("PLC still unreachable: %s", e)
                self._outage = True
                return PlantSnapshot.degraded(self._tags, str(e))
        try:
            values = await self._session.read_all(self._tags)
        except (ReadError, ConnectError) as e:
            if not self._outage:
                logger.warning("PLC read failed: %s", e)
            self._outage = True
            return PlantSnapshot.degraded(self._tags, str(e))
        if self._outage:
            logger.info("PLC polling recovered")
            self._outage = False
        return PlantSnapshot.build(values, self._actuator_tags)

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Unexpected error in poll tick")

    async def run(self) -> None:
        """Fire every `interval` until stop(); a firing during a running tick is skipped."""
        self._stopped.clear()
        loop = asyncio.get_running_loop()
        pending: asyncio.Task | None = None
        next_at = loop.time()
        logger.info("Polling %d tags every %.3fs", len(self._tags), self._interval)
        try:
            while not self._stopped.is_set():
                if pending is None or pending.done():
                    pending = asyncio.create_task(self._guarded_tick())
                else:
                    self.skipped += 1
                    logger.debug("Poll tick skipped: previous tick still running")
                next_at += self._interval
                if next_at < loop.time():
                    next_at = loop.time() + self._interval
                try:
                    await asyncio.wait_for(self._stopped.wait(), max(0.0, next_at - loop.time()))
                except asyncio.TimeoutError:
                    pass
        finally:
            if pending is not None and not pending.done():
                await asyncio.wait([pending], timeout=self._interval)

    def stop(self) -> None:
        self._stopped.set()
