"""Monitor status engine - debounced up/down transitions and downtime lifecycle.

A monitor is Up when it has no open downtime and Down while one exists; the
state is never stored separately. Every probe attempt is recorded as a check.

Per-monitor processing is serialized with an asyncio lock: the settle-delay
retry and the downtime read-modify-write must never overlap for one monitor,
whether they come from a sweep or from the recovery poll.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from ..models import Monitor, MonitorDowntime
from ..repository import MonitorRepository
from ..utils.clock import Clock, utcnow
from ..utils.logging_utils import LogCategory, log_event
from .checker import CheckerService, CheckResult
from .connectivity import ConnectivityProbe
from .notifier import Notifier

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class MonitorStatusService:
    """Runs checks for a monitor and applies the state transitions."""

    def __init__(
        self,
        repository: MonitorRepository,
        checker: CheckerService,
        connectivity: ConnectivityProbe,
        notifier: Notifier,
        settle_delay: float = 3,
        recovery_interval: float = 3,
        renotify_seconds: int = 600,
        recovery_poll_enabled: bool = True,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
    ):
        self.repository = repository
        self.checker = checker
        self.connectivity = connectivity
        self.notifier = notifier
        self.settle_delay = settle_delay
        self.recovery_interval = recovery_interval
        self.renotify_seconds = renotify_seconds
        self.recovery_poll_enabled = recovery_poll_enabled
        self.clock = clock
        self.sleep = sleep
        self._locks: Dict[int, asyncio.Lock] = {}
        self._recovery_tasks: Dict[int, asyncio.Task] = {}

    def _lock_for(self, monitor_id: int) -> asyncio.Lock:
        return self._locks.setdefault(monitor_id, asyncio.Lock())

    def is_in_flight(self, monitor_id: int) -> bool:
        """True while a check or recovery iteration holds the monitor's lock."""
        lock = self._locks.get(monitor_id)
        return lock is not None and lock.locked()

    async def process_check(self, monitor: Monitor) -> Optional[str]:
        """Check a monitor once, with a confirming retry on failure.

        Returns the resulting state ("up"/"down"), or None when the pass was
        skipped because this host has no connectivity.
        """
        async with self._lock_for(monitor.id):
            return await self._process_check(monitor)

    async def _process_check(self, monitor: Monitor) -> Optional[str]:
        if not await self.connectivity.has_connectivity():
            logger.debug(f"No connectivity, skipping check for monitor {monitor.id}")
            return None

        result = await self._probe_and_record(monitor)
        if result.is_up:
            await self.handle_monitor_up(monitor)
            return "up"

        # Confirm the failure before treating it as an outage
        await self.sleep(self.settle_delay)
        retry = await self._probe_and_record(monitor)
        if retry.is_up:
            await self.handle_monitor_up(monitor)
            return "up"

        await self.handle_monitor_down(monitor)
        return "down"

    async def _probe_and_record(self, monitor: Monitor) -> CheckResult:
        result = await self.checker.probe(monitor)
        await self.repository.create_check(monitor.id, result, self.clock())
        return result

    async def handle_monitor_down(self, monitor: Monitor) -> MonitorDowntime:
        """Open a downtime, or re-notify for an ongoing one every renotify_seconds."""
        now = self.clock()
        downtime = await self.repository.get_open_downtime(monitor.id)

        if downtime is None:
            try:
                downtime = await self.repository.open_downtime(monitor.id, started_at=now, notified_at=now)
            except IntegrityError:
                # Open downtime was created elsewhere; treat it as ongoing
                downtime = await self.repository.get_open_downtime(monitor.id)
                if downtime is None:
                    raise
            else:
                log_event(
                    logger, logging.ERROR, LogCategory.MONITOR, "Monitor downtime started",
                    monitor_id=monitor.id, monitor_name=monitor.name, started_at=now.isoformat(),
                )
                await self._notify(self.notifier.monitor_down(monitor))
                self.ensure_recovery_poll(monitor.id)
                return downtime

        await self._renotify_if_due(monitor, downtime, now)
        return downtime

    async def _renotify_if_due(self, monitor: Monitor, downtime: MonitorDowntime, now):
        last = downtime.last_notification_at
        # abs() tolerates clock skew between writers
        elapsed = abs((now - last).total_seconds()) if last is not None else 0
        if elapsed < self.renotify_seconds:
            return

        await self.repository.mark_downtime_notified(downtime.id, now)
        downtime.last_notification_at = now
        await self._notify(self.notifier.monitor_still_down(monitor, downtime))

    async def handle_monitor_up(self, monitor: Monitor) -> Optional[MonitorDowntime]:
        """Close the open downtime, if any, and announce the recovery."""
        downtime = await self.repository.get_open_downtime(monitor.id)
        if downtime is None:
            return None

        downtime = await self.repository.close_downtime(downtime.id, self.clock())
        log_event(
            logger, logging.INFO, LogCategory.MONITOR, "Monitor recovered",
            monitor_id=monitor.id, monitor_name=monitor.name, duration_seconds=downtime.duration_seconds,
        )
        await self._notify(self.notifier.monitor_recovered(monitor, downtime))
        return downtime

    async def _notify(self, delivery: Awaitable[bool]):
        try:
            await delivery
        except Exception as e:
            logger.error(f"Notification failed: {type(e).__name__}: {e}")

    def ensure_recovery_poll(self, monitor_id: int) -> bool:
        """Start the fast recovery poll for a down monitor unless one is running."""
        if not self.recovery_poll_enabled:
            return False
        task = self._recovery_tasks.get(monitor_id)
        if task is not None and not task.done():
            return False

        task = asyncio.create_task(self._run_recovery_task(monitor_id))
        self._recovery_tasks[monitor_id] = task
        return True

    def has_recovery_poll(self, monitor_id: int) -> bool:
        task = self._recovery_tasks.get(monitor_id)
        return task is not None and not task.done()

    async def _run_recovery_task(self, monitor_id: int):
        try:
            await self.run_recovery_poll(monitor_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Recovery poll for monitor {monitor_id} failed: {type(e).__name__}: {e}")
        finally:
            if self._recovery_tasks.get(monitor_id) is asyncio.current_task():
                del self._recovery_tasks[monitor_id]

    async def run_recovery_poll(self, monitor_id: int) -> str:
        """Re-probe a down monitor every recovery_interval until it recovers.

        Stops when the monitor is gone, inactive, or no longer has an open
        downtime. Returns "recovered" or "stopped".
        """
        while True:
            await self.sleep(self.recovery_interval)

            async with self._lock_for(monitor_id):
                monitor = await self.repository.get_monitor(monitor_id)
                if monitor is None or not monitor.is_active:
                    return "stopped"
                if await self.repository.get_open_downtime(monitor_id) is None:
                    return "stopped"
                if not await self.connectivity.has_connectivity():
                    continue

                result = await self._probe_and_record(monitor)
                if result.is_up:
                    await self.handle_monitor_up(monitor)
                    return "recovered"

                await self.handle_monitor_down(monitor)

    async def shutdown(self):
        """Cancel outstanding recovery polls."""
        tasks = [t for t in self._recovery_tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._recovery_tasks.clear()
