"""SSL checker service - inspects a monitor's TLS certificate."""
import asyncio
import logging
import socket
import ssl
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.x509.oid import NameOID

from ..models import Monitor
from ..utils.clock import Clock, to_naive_utc, utcnow
from ..utils.logging_utils import LogCategory, log_event

logger = logging.getLogger(__name__)


@dataclass
class SslResult:
    """Certificate metadata for a monitor's host."""
    valid: bool
    issuer: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_until_expiration: Optional[int] = None
    error_message: Optional[str] = None

    @classmethod
    def error(cls, message: str) -> "SslResult":
        return cls(valid=False, error_message=message)


class SslCheckerService:
    """Opens a TLS connection and reads the peer certificate.

    Peer verification is disabled on purpose: the goal is to inspect the
    certificate (expiry, issuer), including self-signed or already expired
    ones, not to decide whether it is trusted.
    """

    def __init__(self, timeout: float = 10, warning_days: int = 30, clock: Clock = utcnow):
        self.timeout = timeout
        self.warning_days = warning_days
        self.clock = clock

    async def check_certificate(self, monitor: Monitor) -> SslResult:
        url = (monitor.url or "").strip()
        if not url.lower().startswith("https://"):
            return SslResult.error("URL is not HTTPS")

        try:
            parts = urlsplit(url)
            host = parts.hostname
            port = parts.port or 443
            if host:
                # Empty or over-long labels fail here instead of inside the socket call
                host.encode("idna")
        except ValueError:
            return SslResult.error("Invalid URL format")

        if not host:
            return SslResult.error("Invalid URL format")

        try:
            # Socket operations are blocking, run them in the thread pool
            loop = asyncio.get_running_loop()
            cert_der = await asyncio.wait_for(
                loop.run_in_executor(None, self._fetch_certificate, host, port),
                timeout=self.timeout + 5,
            )
        except (OSError, ValueError, asyncio.TimeoutError) as e:
            log_event(
                logger, logging.WARNING, LogCategory.SSL, "TLS connection failed",
                monitor_id=monitor.id, host=host, port=port, error=str(e) or type(e).__name__,
            )
            return SslResult.error("Connection failed")

        if not cert_der:
            return SslResult.error("Could not retrieve certificate")

        return self.parse_certificate(cert_der)

    def _fetch_certificate(self, host: str, port: int) -> Optional[bytes]:
        """Return the peer certificate in DER form (blocking operation)."""
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                # getpeercert() returns an empty dict with CERT_NONE, the binary form does not
                return ssock.getpeercert(binary_form=True)

    def parse_certificate(self, cert_der: bytes) -> SslResult:
        try:
            cert = x509.load_der_x509_certificate(cert_der)
            valid_from = to_naive_utc(cert.not_valid_before_utc)
            valid_to = to_naive_utc(cert.not_valid_after_utc)
            issuer = self._issuer_name(cert)
        except ValueError:
            return SslResult.error("Could not parse certificate")

        now = self.clock()
        is_valid = now < valid_to
        days_until_expiration = max(0, (valid_to - now).days)

        return SslResult(
            valid=is_valid,
            issuer=issuer,
            valid_from=valid_from,
            valid_to=valid_to,
            days_until_expiration=days_until_expiration,
            error_message=None if is_valid else "Certificate has expired",
        )

    @staticmethod
    def _issuer_name(cert: x509.Certificate) -> str:
        for oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATION_NAME):
            attributes = cert.issuer.get_attributes_for_oid(oid)
            if attributes:
                return str(attributes[0].value)
        return "Unknown"

    def is_expiring_soon(self, days_until_expiration: Optional[int]) -> bool:
        return days_until_expiration is not None and days_until_expiration <= self.warning_days
