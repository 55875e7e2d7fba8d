"""Scheduler service - drives the monitor, SSL and domain sweeps.

Each sweep is an idempotent entry point: a call made while the same sweep is
still running returns immediately, and monitors already being processed are
skipped. Monitors are processed in bounded batches; members of a batch run
concurrently.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..models import Monitor
from ..repository import MonitorRepository
from ..utils.clock import Clock, utcnow
from ..utils.logging_utils import LogCategory, log_event
from .connectivity import ConnectivityProbe
from .domain_checker import DomainCheckerService
from .notifier import Notifier
from .runtime_config import RuntimeConfig
from .ssl_checker import SslCheckerService
from .status_engine import MonitorStatusService

logger = logging.getLogger(__name__)


def is_monitor_due(check_interval: int, last_checked_at: Optional[datetime], now: datetime) -> bool:
    """A monitor is due when it was never checked or its last check is at least one interval old."""
    if last_checked_at is None:
        return True
    return (now - last_checked_at).total_seconds() >= check_interval


def _batches(items: List, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SchedulerService:
    """Sweep entry points plus the periodic driver that invokes them."""

    def __init__(
        self,
        repository: MonitorRepository,
        status_service: MonitorStatusService,
        ssl_checker: SslCheckerService,
        domain_checker: DomainCheckerService,
        notifier: Notifier,
        connectivity: ConnectivityProbe,
        runtime_config: Optional[RuntimeConfig] = None,
        batch_size: int = 10,
        monitor_sweep_seconds: int = 60,
        ssl_sweep_hours: int = 24,
        domain_sweep_hours: int = 24,
        cleanup_hours: int = 24,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.status_service = status_service
        self.ssl_checker = ssl_checker
        self.domain_checker = domain_checker
        self.notifier = notifier
        self.connectivity = connectivity
        self.runtime_config = runtime_config or RuntimeConfig()
        self.batch_size = max(1, batch_size)
        self.monitor_sweep_seconds = monitor_sweep_seconds
        self.ssl_sweep_hours = ssl_sweep_hours
        self.domain_sweep_hours = domain_sweep_hours
        self.cleanup_hours = cleanup_hours
        self.clock = clock

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._monitor_sweep_lock = asyncio.Lock()
        self._ssl_sweep_lock = asyncio.Lock()
        self._domain_sweep_lock = asyncio.Lock()

    def start(self):
        """Start the periodic driver."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_job,
            args=[self.sweep_due_monitors],
            trigger=IntervalTrigger(seconds=self.monitor_sweep_seconds),
            id="sweep_due_monitors",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self.monitor_sweep_seconds,
        )
        self.scheduler.add_job(
            self._run_job,
            args=[self.sweep_ssl],
            trigger=IntervalTrigger(hours=self.ssl_sweep_hours),
            id="sweep_ssl",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._run_job,
            args=[self.sweep_domains],
            trigger=IntervalTrigger(hours=self.domain_sweep_hours),
            id="sweep_domains",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._run_job,
            args=[self.cleanup_old_records],
            trigger=IntervalTrigger(hours=self.cleanup_hours),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (monitors every {self.monitor_sweep_seconds}s, "
            f"batch={self.batch_size}, ssl every {self.ssl_sweep_hours}h, "
            f"domains every {self.domain_sweep_hours}h)"
        )

    def stop(self):
        """Stop the periodic driver."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _run_job(self, sweep):
        try:
            await sweep()
        except Exception as e:
            logger.error(f"Error running {sweep.__name__}: {e}")

    async def sweep_due_monitors(self) -> Dict[str, int]:
        """Check every active monitor whose last check is absent or older than its interval."""
        stats = {"due": 0, "checked": 0, "skipped": 0, "errors": 0}
        if self._monitor_sweep_lock.locked():
            logger.debug("Monitor sweep already running")
            return stats

        async with self._monitor_sweep_lock:
            self._resume_recovery_polls(
                await self.repository.active_monitor_ids_with_open_downtime()
            )

            now = self.clock()
            monitors_data = await self.repository.active_monitors_with_last_check()
            due_ids = [
                monitor_id
                for monitor_id, check_interval, last_checked in monitors_data
                if is_monitor_due(check_interval, last_checked, now)
            ]
            stats["due"] = len(due_ids)
            if not due_ids:
                return stats

            if not await self.connectivity.has_connectivity():
                logger.debug(f"No connectivity, skipping {len(due_ids)} due monitors")
                stats["skipped"] = len(due_ids)
                return stats

            logger.debug(f"Checking {len(due_ids)} due monitors out of {len(monitors_data)} active")
            for batch in _batches(due_ids, self.batch_size):
                outcomes = await asyncio.gather(*[self._check_single_monitor(mid) for mid in batch])
                for outcome in outcomes:
                    stats[outcome] += 1

        return stats

    def _resume_recovery_polls(self, monitor_ids: List[int]):
        for monitor_id in monitor_ids:
            if self.status_service.ensure_recovery_poll(monitor_id):
                logger.info(f"Resumed recovery poll for monitor {monitor_id}")

    async def _check_single_monitor(self, monitor_id: int) -> str:
        if self.status_service.is_in_flight(monitor_id):
            return "skipped"
        try:
            monitor = await self.repository.get_monitor(monitor_id)
            if monitor is None or not monitor.is_active:
                return "skipped"
            state = await self.status_service.process_check(monitor)
            return "skipped" if state is None else "checked"
        except Exception as e:
            logger.error(f"Error checking monitor {monitor_id}: {e}")
            return "errors"

    async def sweep_ssl(self) -> Dict[str, int]:
        """Inspect certificates of all active HTTPS monitors."""
        stats = {"checked": 0, "expiring": 0, "expired": 0, "errors": 0}
        if self._ssl_sweep_lock.locked():
            logger.debug("SSL sweep already running")
            return stats

        async with self._ssl_sweep_lock:
            monitors = await self.repository.list_active_https_monitors()
            for batch in _batches(monitors, self.batch_size):
                outcomes = await asyncio.gather(*[self._check_ssl(m) for m in batch])
                for outcome in outcomes:
                    stats["checked"] += 1
                    if outcome:
                        stats[outcome] += 1

        log_event(logger, logging.INFO, LogCategory.SSL, "SSL sweep completed", **stats)
        return stats

    async def _check_ssl(self, monitor: Monitor) -> Optional[str]:
        try:
            result = await self.ssl_checker.check_certificate(monitor)
            await self.repository.attach_ssl_to_latest_check(monitor.id, result)

            if result.valid_to is None:
                log_event(
                    logger, logging.WARNING, LogCategory.SSL, "SSL check failed",
                    monitor_id=monitor.id, error=result.error_message,
                )
                return "errors"
            if not result.valid:
                await self.notifier.ssl_expired(monitor, result)
                return "expired"
            if self.ssl_checker.is_expiring_soon(result.days_until_expiration):
                log_event(
                    logger, logging.WARNING, LogCategory.SSL, "Certificate expiring soon",
                    monitor_id=monitor.id, days=result.days_until_expiration,
                )
                await self.notifier.ssl_expiring(monitor, result)
                return "expiring"
            return None
        except Exception as e:
            logger.error(f"Error checking SSL for monitor {monitor.id}: {e}")
            return "errors"

    async def sweep_domains(self) -> Dict[str, int]:
        """Refresh domain expiry for all active monitors."""
        stats = {"checked": 0, "expiring": 0, "expired": 0, "errors": 0}
        if self._domain_sweep_lock.locked():
            logger.debug("Domain sweep already running")
            return stats

        async with self._domain_sweep_lock:
            monitors = await self.repository.list_active_monitors()
            for batch in _batches(monitors, self.batch_size):
                outcomes = await asyncio.gather(*[self._check_domain(m) for m in batch])
                for outcome in outcomes:
                    stats["checked"] += 1
                    if outcome:
                        stats[outcome] += 1

        log_event(logger, logging.INFO, LogCategory.DOMAIN, "Domain sweep completed", **stats)
        return stats

    async def _check_domain(self, monitor: Monitor) -> Optional[str]:
        try:
            result = await self.domain_checker.get_expiration(monitor)
            await self.repository.update_domain_fields(monitor.id, result, self.clock())

            if result.error_message:
                return "errors"
            if result.days_until_expiration is None:
                return None
            if result.days_until_expiration <= 0:
                await self.notifier.domain_expired(monitor, result)
                return "expired"
            if self.domain_checker.is_expiring_soon(result.days_until_expiration):
                await self.notifier.domain_expiring(monitor, result)
                return "expiring"
            return None
        except Exception as e:
            logger.error(f"Error checking domain for monitor {monitor.id}: {e}")
            return "errors"

    async def cleanup_old_records(self, dry_run: bool = False) -> Dict[str, int]:
        """Delete checks and closed downtimes past their retention period."""
        now = self.clock()
        check_cutoff = now - timedelta(days=self.runtime_config.check_retention_days)
        downtime_cutoff = now - timedelta(days=self.runtime_config.downtime_retention_days)

        if dry_run:
            stats = {
                "checks": await self.repository.count_checks_before(check_cutoff),
                "downtimes": await self.repository.count_closed_downtimes_before(downtime_cutoff),
            }
        else:
            stats = {
                "checks": await self.repository.delete_checks_before(check_cutoff),
                "downtimes": await self.repository.delete_closed_downtimes_before(downtime_cutoff),
            }
            if stats["checks"] or stats["downtimes"]:
                log_event(logger, logging.INFO, LogCategory.SYSTEM, "Cleaned up old records", **stats)
        return stats
