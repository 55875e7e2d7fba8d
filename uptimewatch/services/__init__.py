"""Services for probing, status tracking, notification and scheduling."""
from dataclasses import dataclass
from typing import Optional

from ..config import Settings, settings as default_settings
from ..repository import MonitorRepository
from .checker import CheckerService, CheckResult
from .connectivity import ConnectivityProbe
from .content_validator import ContentValidator
from .domain_checker import DomainCheckerService, DomainResult, WhoisCache
from .notifier import Notifier, build_sinks
from .renderer import PlaywrightRenderer
from .runtime_config import RuntimeConfig, load_runtime_config
from .scheduler import SchedulerService
from .ssl_checker import SslCheckerService, SslResult
from .status_engine import MonitorStatusService


@dataclass
class Services:
    """The wired service graph shared by the API, the CLI and the scheduler."""
    repository: MonitorRepository
    runtime_config: RuntimeConfig
    connectivity: ConnectivityProbe
    checker: CheckerService
    status: MonitorStatusService
    ssl_checker: SslCheckerService
    domain_checker: DomainCheckerService
    notifier: Notifier
    scheduler: SchedulerService

    async def shutdown(self):
        self.scheduler.stop()
        await self.status.shutdown()


def create_services(
    config: Settings = default_settings,
    repository: Optional[MonitorRepository] = None,
    runtime_config: Optional[RuntimeConfig] = None,
    recovery_poll_enabled: bool = True,
) -> Services:
    """Build every service from environment settings and the settings-table config."""
    repository = repository or MonitorRepository()
    runtime_config = runtime_config or RuntimeConfig()

    renderer = None
    if config.render_enabled:
        renderer = PlaywrightRenderer(timeout=config.render_timeout, chromium_path=config.chromium_path)

    connectivity = ConnectivityProbe(url=config.connectivity_url, timeout=config.connectivity_timeout)
    checker = CheckerService(
        content_validator=ContentValidator(renderer=renderer, render_timeout=config.render_timeout),
        timeout=config.http_timeout,
        body_max_length=config.body_max_length,
        verify=config.verify_tls,
    )
    notifier = Notifier(build_sinks(runtime_config))
    status = MonitorStatusService(
        repository,
        checker,
        connectivity,
        notifier,
        settle_delay=config.settle_delay_seconds,
        recovery_interval=config.recovery_poll_seconds,
        renotify_seconds=config.renotify_seconds,
        recovery_poll_enabled=recovery_poll_enabled,
    )
    ssl_checker = SslCheckerService(timeout=config.ssl_timeout, warning_days=config.expiry_warning_days)
    domain_checker = DomainCheckerService(
        timeout=config.whois_timeout,
        warning_days=config.expiry_warning_days,
        cache=WhoisCache(ttl=config.whois_cache_ttl),
    )
    scheduler = SchedulerService(
        repository,
        status,
        ssl_checker,
        domain_checker,
        notifier,
        connectivity,
        runtime_config=runtime_config,
        batch_size=config.sweep_batch_size,
        monitor_sweep_seconds=config.monitor_sweep_seconds,
        ssl_sweep_hours=config.ssl_sweep_hours,
        domain_sweep_hours=config.domain_sweep_hours,
        cleanup_hours=config.cleanup_hours,
    )

    return Services(
        repository=repository,
        runtime_config=runtime_config,
        connectivity=connectivity,
        checker=checker,
        status=status,
        ssl_checker=ssl_checker,
        domain_checker=domain_checker,
        notifier=notifier,
        scheduler=scheduler,
    )


async def bootstrap_services(config: Settings = default_settings, **kwargs) -> Services:
    """Load the settings-table config, then wire the services."""
    repository = kwargs.pop("repository", None) or MonitorRepository()
    runtime_config = await load_runtime_config(repository)
    return create_services(config, repository=repository, runtime_config=runtime_config, **kwargs)


__all__ = [
    "Services",
    "create_services",
    "bootstrap_services",
    "CheckerService",
    "CheckResult",
    "ConnectivityProbe",
    "ContentValidator",
    "DomainCheckerService",
    "DomainResult",
    "WhoisCache",
    "Notifier",
    "build_sinks",
    "PlaywrightRenderer",
    "RuntimeConfig",
    "load_runtime_config",
    "SchedulerService",
    "SslCheckerService",
    "SslResult",
    "MonitorStatusService",
]
