"""Domain checker service - domain registration expiry via WHOIS (port 43)."""
import asyncio
import contextlib
import ipaddress
import logging
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from ..models import Monitor
from ..utils.clock import Clock, utcnow
from ..utils.logging_utils import LogCategory, log_event

logger = logging.getLogger(__name__)

WHOIS_PORT = 43
DEFAULT_WHOIS_SERVER = "whois.iana.org"

WHOIS_SERVERS = {
    "com": "whois.verisign-grs.com",
    "net": "whois.verisign-grs.com",
    "org": "whois.pir.org",
    "info": "whois.afilias.net",
    "biz": "whois.neulevel.biz",
    "us": "whois.nic.us",
    "uk": "whois.nic.uk",
    "de": "whois.denic.de",
    "fr": "whois.afnic.fr",
    "it": "whois.nic.it",
    "es": "whois.nic.es",
    "nl": "whois.domain-registry.nl",
    "be": "whois.dns.be",
    "at": "whois.nic.at",
    "ch": "whois.nic.ch",
    "se": "whois.iis.se",
    "pl": "whois.dns.pl",
    "eu": "whois.eu",
    "ca": "whois.cira.ca",
    "au": "whois.auda.org.au",
    "br": "whois.registro.br",
    "jp": "whois.jprs.jp",
    "mx": "whois.mx",
    "me": "whois.nic.me",
    "io": "whois.nic.io",
    "co": "whois.nic.co",
    "ai": "whois.nic.ai",
    "xyz": "whois.nic.xyz",
    "dev": "whois.nic.google",
    "app": "whois.nic.google",
}

# Public suffixes with two labels: the registrable domain keeps three labels
MULTI_PART_SUFFIXES = {
    "co.uk", "org.uk", "me.uk", "ac.uk", "gov.uk",
    "com.au", "net.au", "org.au",
    "co.za",
    "com.br", "net.br",
    "co.jp", "ne.jp", "or.jp",
    "com.mx",
    "co.nz",
    "co.in",
    "com.ar",
    "com.tr",
    "com.cn",
}

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def _ymd(match: re.Match) -> Tuple[str, str, str]:
    return match.group(1), match.group(2), match.group(3)


def _dmy(match: re.Match) -> Tuple[str, str, str]:
    return match.group(3), match.group(2), match.group(1)


def _d_mon_y(match: re.Match) -> Tuple[str, str, str]:
    month = MONTHS.get(match.group(2).lower()[:3])
    if month is None:
        raise ValueError(f"Unknown month: {match.group(2)}")
    return match.group(3), f"{month:02d}", match.group(1)


# Tried in order, first match wins
EXPIRATION_PATTERNS: List[Tuple[re.Pattern, Callable[[re.Match], Tuple[str, str, str]]]] = [
    (re.compile(r"expir[^:\n]*:\s*(\d{4})[-./](\d{2})[-./](\d{2})", re.IGNORECASE), _ymd),
    (re.compile(r"expir[^:\n]*:\s*(\d{2})[-./](\d{2})[-./](\d{4})", re.IGNORECASE), _dmy),
    (re.compile(r"expir[^:\n]*:\s*(\d{1,2})[-\s]([A-Za-z]{3,9})[-\s](\d{4})", re.IGNORECASE), _d_mon_y),
    (re.compile(r"Registry Expiry Date:\s*(\d{4})-(\d{2})-(\d{2})", re.IGNORECASE), _ymd),
    (re.compile(r"expires:\s*(\d{4})-(\d{2})-(\d{2})", re.IGNORECASE), _ymd),
    (re.compile(r"paid-till:\s*(\d{4})[-.](\d{2})[-.](\d{2})", re.IGNORECASE), _ymd),
]


@dataclass
class DomainResult:
    """Registration expiry for a monitor's domain."""
    expires_at: Optional[datetime] = None
    days_until_expiration: Optional[int] = None
    error_message: Optional[str] = None
    domain: Optional[str] = None

    @classmethod
    def error(cls, message: str, domain: Optional[str] = None) -> "DomainResult":
        return cls(error_message=message, domain=domain)


class WhoisCache:
    """Time-bounded per-domain result store with single-flight lookups.

    Concurrent callers asking for the same missing key wait on one lookup
    instead of each querying the WHOIS server.
    """

    def __init__(self, ttl: float = 86400, timer: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._timer = timer
        self._entries: Dict[str, Tuple[float, DomainResult]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Optional[DomainResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires, value = entry
        if self._timer() >= expires:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: DomainResult):
        self._entries[key] = (self._timer() + self.ttl, value)

    def clear(self):
        self._entries.clear()

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[DomainResult]],
        cacheable: Callable[[DomainResult], bool] = lambda result: True,
    ) -> DomainResult:
        cached = self.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have filled the entry while we waited
            cached = self.get(key)
            if cached is not None:
                return cached
            value = await compute()
            if cacheable(value):
                self.set(key, value)
            return value


def extract_domain(url: str) -> Optional[str]:
    """Registrable domain for a URL, e.g. https://www.example.co.uk -> example.co.uk."""
    try:
        host = urlsplit((url or "").strip()).hostname
    except ValueError:
        return None

    if not host:
        return None

    host = host.rstrip(".").lower()
    try:
        ipaddress.ip_address(host)
        return None  # IP literals have no registrable domain
    except ValueError:
        pass

    if host.startswith("www."):
        host = host[4:]

    labels = [label for label in host.split(".") if label]
    if len(labels) < 2:
        return None

    if len(labels) >= 3 and ".".join(labels[-2:]) in MULTI_PART_SUFFIXES:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


class DomainCheckerService:
    """Looks up domain expiration dates over WHOIS, cached per domain."""

    def __init__(
        self,
        timeout: float = 10,
        warning_days: int = 30,
        cache: Optional[WhoisCache] = None,
        whois_servers: Optional[Dict[str, str]] = None,
        port: int = WHOIS_PORT,
        clock: Clock = utcnow,
    ):
        self.timeout = timeout
        self.warning_days = warning_days
        self.cache = cache or WhoisCache()
        self.whois_servers = whois_servers if whois_servers is not None else WHOIS_SERVERS
        self.port = port
        self.clock = clock

    async def get_expiration(self, monitor: Monitor) -> DomainResult:
        domain = extract_domain(monitor.url)
        if not domain:
            log_event(
                logger, logging.ERROR, LogCategory.DOMAIN, "Domain extraction failed",
                monitor_id=monitor.id, url=monitor.url,
            )
            return DomainResult.error("Could not extract domain from URL")

        result = await self.cache.get_or_compute(
            domain,
            lambda: self._lookup(domain, monitor),
            # Transport failures are retried on the next request instead of cached
            cacheable=lambda r: not (r.error_message or "").startswith("Connection failed"),
        )
        return self._with_current_days(result)

    def get_whois_server(self, domain: str) -> str:
        tld = domain.rsplit(".", 1)[-1].lower()
        return self.whois_servers.get(tld, DEFAULT_WHOIS_SERVER)

    def is_expiring_soon(self, days_until_expiration: Optional[int]) -> bool:
        return days_until_expiration is not None and days_until_expiration <= self.warning_days

    async def _lookup(self, domain: str, monitor: Monitor) -> DomainResult:
        server = self.get_whois_server(domain)
        try:
            response = await self._query_whois(server, domain)
        except (OSError, asyncio.TimeoutError) as e:
            error = str(e) or "Connection timed out"
            log_event(
                logger, logging.WARNING, LogCategory.DOMAIN, "WHOIS connection failed",
                monitor_id=monitor.id, domain=domain, whois_server=server, error=error,
            )
            return DomainResult.error(f"Connection failed: {error}", domain)

        if not response.strip():
            return DomainResult.error("Empty WHOIS response", domain)

        result = self.parse_whois_response(response, domain)
        if result.error_message:
            log_event(
                logger, logging.WARNING, LogCategory.DOMAIN, result.error_message,
                monitor_id=monitor.id, domain=domain, whois_server=server,
            )
        elif self.is_expiring_soon(result.days_until_expiration):
            log_event(
                logger, logging.WARNING, LogCategory.DOMAIN, "Domain expiring soon",
                monitor_id=monitor.id, domain=domain, days=result.days_until_expiration,
            )
        return result

    async def _query_whois(self, server: str, domain: str) -> str:
        """Send the query and read until the server closes the connection."""
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(server, self.port),
            timeout=self.timeout,
        )
        try:
            writer.write(f"{domain}\r\n".encode())
            await writer.drain()
            data = await asyncio.wait_for(reader.read(), timeout=self.timeout)
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
        return data.decode("utf-8", errors="replace")

    def parse_whois_response(self, response: str, domain: Optional[str] = None) -> DomainResult:
        for pattern, to_parts in EXPIRATION_PATTERNS:
            match = pattern.search(response)
            if not match:
                continue
            try:
                year, month, day = to_parts(match)
                expires_at = datetime.strptime(f"{year}-{month}-{day}", "%Y-%m-%d")
            except ValueError:
                return DomainResult.error("Invalid date format in WHOIS response", domain)
            return self._with_current_days(DomainResult(expires_at=expires_at, domain=domain))

        return DomainResult.error("Could not parse expiration date from WHOIS response", domain)

    def _with_current_days(self, result: DomainResult) -> DomainResult:
        if result.expires_at is None:
            return result
        days = max(0, (result.expires_at - self.clock()).days)
        return replace(result, days_until_expiration=days)
