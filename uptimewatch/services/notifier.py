"""Notifier - formats alert messages and fans them out to the configured sinks."""
import html
import logging
from typing import Iterable, List, Optional, Protocol

import httpx

from ..models import Monitor, MonitorDowntime
from ..utils.clock import Clock, format_duration, utcnow
from ..utils.logging_utils import LogCategory, log_event
from .domain_checker import DomainResult
from .runtime_config import RuntimeConfig
from .ssl_checker import SslResult
from .telegram_sender import TelegramSender

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


class NotificationSink(Protocol):
    name: str

    async def send(self, text: str) -> bool:
        ...


class WebhookSender:
    """Notification sink posting a JSON payload to a URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 10,
        clock: Clock = utcnow,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.clock = clock
        self._transport = transport

    async def send(self, text: str) -> bool:
        payload = {
            "text": text,
            "timestamp": self.clock().isoformat() + "Z",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
            if response.status_code < 400:
                return True
            logger.warning(f"Webhook returned {response.status_code}")
            return False
        except Exception as e:
            logger.error(f"Failed to send webhook: {e}")
            return False


def build_sinks(config: RuntimeConfig) -> List[NotificationSink]:
    """Create the sinks for which credentials are configured."""
    sinks: List[NotificationSink] = []
    if config.telegram_bot_token and config.telegram_chat_id:
        sinks.append(TelegramSender(config.telegram_bot_token, config.telegram_chat_id))
    if config.webhook_url:
        sinks.append(WebhookSender(config.webhook_url))
    return sinks


class Notifier:
    """Builds human-readable alerts and delivers them.

    Delivery failures are logged and reported through the return value only;
    they never raise into the state transition that triggered them.
    """

    def __init__(self, sinks: Optional[Iterable[NotificationSink]] = None, clock: Clock = utcnow):
        self.sinks = list(sinks or [])
        self.clock = clock

    async def send(self, text: str) -> bool:
        """Send to every sink; True if at least one delivered."""
        if not self.sinks:
            logger.debug("No notification sinks configured")
            return False

        delivered = False
        for sink in self.sinks:
            try:
                ok = await sink.send(text)
            except Exception as e:
                ok = False
                logger.error(f"Notification sink {getattr(sink, 'name', sink)} raised: {type(e).__name__}: {e}")
            if not ok:
                log_event(
                    logger, logging.WARNING, LogCategory.NOTIFICATION, "Notification not delivered",
                    sink=getattr(sink, "name", type(sink).__name__),
                )
            delivered = delivered or ok
        return delivered

    def _header(self, icon: str, title: str, monitor: Monitor) -> List[str]:
        return [
            f"{icon} <b>{title}</b>",
            "",
            f"Name: {html.escape(monitor.name or '')}",
            f"URL: {html.escape(monitor.url or '')}",
        ]

    def _now(self) -> str:
        return self.clock().strftime(TIME_FORMAT)

    async def monitor_down(self, monitor: Monitor) -> bool:
        lines = self._header("🔴", "Monitor Down", monitor)
        lines.append(f"Time: {self._now()}")
        return await self.send("\n".join(lines))

    async def monitor_still_down(self, monitor: Monitor, downtime: MonitorDowntime) -> bool:
        elapsed = (self.clock() - downtime.started_at).total_seconds()
        lines = self._header("🟠", "Monitor Still Down", monitor)
        lines.append(f"Downtime: {format_duration(int(elapsed))}")
        lines.append(f"Time: {self._now()}")
        return await self.send("\n".join(lines))

    async def monitor_recovered(self, monitor: Monitor, downtime: MonitorDowntime) -> bool:
        lines = self._header("🟢", "Monitor Recovered", monitor)
        lines.append(f"Downtime: {format_duration(downtime.duration_seconds or 0)}")
        lines.append(f"Recovered at: {self._now()}")
        return await self.send("\n".join(lines))

    async def ssl_expiring(self, monitor: Monitor, result: SslResult) -> bool:
        lines = self._header("⚠️", "SSL Certificate Expiring Soon", monitor)
        lines.append(f"Issuer: {html.escape(result.issuer or 'Unknown')}")
        if result.valid_to:
            lines.append(f"Expires: {result.valid_to.strftime(TIME_FORMAT)}")
        lines.append(f"Days remaining: {result.days_until_expiration}")
        return await self.send("\n".join(lines))

    async def ssl_expired(self, monitor: Monitor, result: SslResult) -> bool:
        lines = self._header("🔴", "SSL Certificate Expired", monitor)
        lines.append(f"Issuer: {html.escape(result.issuer or 'Unknown')}")
        if result.valid_to:
            lines.append(f"Expired: {result.valid_to.strftime(TIME_FORMAT)}")
        if result.error_message:
            lines.append(f"Error: {html.escape(result.error_message)}")
        return await self.send("\n".join(lines))

    async def domain_expiring(self, monitor: Monitor, result: DomainResult) -> bool:
        lines = self._header("⚠️", "Domain Expiring Soon", monitor)
        if result.domain:
            lines.append(f"Domain: {html.escape(result.domain)}")
        if result.expires_at:
            lines.append(f"Expires: {result.expires_at.strftime('%Y-%m-%d')}")
        lines.append(f"Days remaining: {result.days_until_expiration}")
        return await self.send("\n".join(lines))

    async def domain_expired(self, monitor: Monitor, result: DomainResult) -> bool:
        lines = self._header("🔴", "Domain Expired", monitor)
        if result.domain:
            lines.append(f"Domain: {html.escape(result.domain)}")
        if result.expires_at:
            lines.append(f"Expired: {result.expires_at.strftime('%Y-%m-%d')}")
        return await self.send("\n".join(lines))
