import asyncio
import time
from typing import Any, Dict, List, Optional, Set

from core.cache import StreamCache
from services.ppv.browser.session import SessionFactory
from services.ppv.discovery import EventDiscovery
from services.ppv.models import StreamRecord
from services.ppv.resolver import StreamResolver
from shared.config.relay import SchedulerConfig
from shared.logging.logger import get_logger
from shared.utils.hashing import stable_event_id

log = get_logger("core.scheduler")


class SchedulerBusy(Exception):
    """A refresh was requested while another one is still running."""


class RefreshScheduler:
    """
    SINGLE-FLIGHT REFRESH SCHEDULER

    RULES:
    - At most ONE discovery+resolution batch at a time; extra requests are skipped
    - ONE rendering session per batch, always closed when the batch ends
    - The cache is only written on a completed batch; a failed batch keeps
      the previous snapshot
    """

    def __init__(
        self,
        cache: StreamCache,
        session_factory: SessionFactory,
        *,
        discovery: Optional[EventDiscovery] = None,
        resolver: Optional[StreamResolver] = None,
        config: Optional[SchedulerConfig] = None,
    ):
        self._cache = cache
        self._session_factory = session_factory
        self._discovery = discovery or EventDiscovery()
        self._resolver = resolver or StreamResolver()
        self._config = config or SchedulerConfig()

        self._busy = False
        self._tasks: Set[asyncio.Task] = set()

        self._cycles = 0
        self._last_started_at: Optional[float] = None
        self._last_finished_at: Optional[float] = None
        self._last_outcome: Optional[str] = None
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._busy

    def _acquire(self) -> None:
        # No await between the check and the set: this is the whole guard.
        if self._busy:
            raise SchedulerBusy("refresh already in progress")
        self._busy = True

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def refresh(self) -> bool:
        """
        Run one batch now. Returns True when a new snapshot was published.
        """
        try:
            self._acquire()
        except SchedulerBusy as e:
            log.info(f"Refresh skipped: {e}")
            return False

        return await self._cycle()

    def trigger(self) -> bool:
        """
        Start a refresh in the background. Returns False when one is already
        running.
        """
        try:
            self._acquire()
        except SchedulerBusy as e:
            log.info(f"Refresh trigger skipped: {e}")
            return False

        task = asyncio.create_task(self._cycle())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Refresh at start (if configured) and then every interval until stopped.
        Ticks landing while a batch is still running are skipped.
        """
        interval = self._config.interval_seconds
        log.info(f"Refresh loop started (interval={interval}s)")

        if self._config.run_on_start:
            self.trigger()

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

            if stop_event.is_set():
                break

            self.trigger()

        log.info("Refresh loop stopped")

    async def shutdown(self) -> None:
        pending: List[asyncio.Task] = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()

    def status(self) -> Dict[str, Any]:
        snapshot = self._cache.snapshot
        return {
            "busy": self._busy,
            "cycles": self._cycles,
            "last_started_at": self._last_started_at,
            "last_finished_at": self._last_finished_at,
            "last_outcome": self._last_outcome,
            "last_error": self._last_error,
            "snapshot_version": snapshot.version,
            "streams": len(snapshot),
        }

    # ------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------

    async def _cycle(self) -> bool:
        self._cycles += 1
        self._last_started_at = time.time()
        previous = self._cache.snapshot.version

        try:
            records = await self._run_batch()
        except asyncio.CancelledError:
            self._last_outcome = "cancelled"
            log.info(f"Refresh cancelled; keeping snapshot v{previous}")
            raise
        except Exception as e:
            self._last_outcome = "failed"
            self._last_error = str(e)
            log.error(f"Refresh failed; keeping snapshot v{previous}: {e}")
            return False
        else:
            self._cache.publish(records)
            self._last_outcome = "published"
            self._last_error = None
            return True
        finally:
            self._last_finished_at = time.time()
            self._busy = False

    async def _run_batch(self) -> List[StreamRecord]:
        log.info("Refresh started: launching rendering session")
        session = await self._session_factory()

        try:
            candidates = await self._discovery.discover(session)
            if not candidates:
                log.info("No live events to resolve")
                return []

            streams = await self._resolver.resolve_all(candidates, session)
        finally:
            try:
                await session.close()
            except Exception as e:
                log.warning(f"Rendering session close ignored: {e}")

        records = [
            StreamRecord(id=stable_event_id(stream.candidate.title), stream=stream)
            for stream in streams
            if stream.found
        ]

        log.info(f"Refresh complete: {len(records)}/{len(candidates)} streams found")
        return records
