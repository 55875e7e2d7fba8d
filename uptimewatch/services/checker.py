"""Checker service - performs the configured HTTP request for a monitor."""
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..models import Monitor
from .content_validator import ContentValidator

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Result of a single probe attempt."""
    status: str  # up, down
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    body_excerpt: Optional[str] = None
    error_message: Optional[str] = None
    content_valid: Optional[bool] = None  # None = validation disabled or not reached

    @property
    def is_up(self) -> bool:
        return self.status == "up"


class CheckerService:
    """Probes a monitor's URL and classifies the outcome as up or down.

    ``probe`` never raises: transport failures, bad status codes and content
    mismatches all resolve to a ``CheckResult`` so a check row can always be
    recorded.
    """

    def __init__(
        self,
        content_validator: Optional[ContentValidator] = None,
        timeout: float = 30,
        body_max_length: int = 5000,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.content_validator = content_validator or ContentValidator()
        self.timeout = timeout
        self.body_max_length = body_max_length
        self.verify = verify
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            verify=self.verify,
            transport=self._transport,
        )

    async def probe(self, monitor: Monitor) -> CheckResult:
        """Perform the monitor's HTTP request.

        Parameters go to the query string for GET and to a JSON body for POST.
        """
        method = (monitor.method or "GET").upper()
        headers = dict(monitor.headers or {})
        parameters = dict(monitor.parameters or {})

        start = time.perf_counter()
        try:
            async with self._client() as client:
                if method == "POST":
                    response = await client.post(monitor.url, headers=headers, json=parameters)
                else:
                    response = await client.get(monitor.url, headers=headers, params=parameters)
            response_time = self._elapsed_ms(start)
        except httpx.TimeoutException:
            return CheckResult(
                status="down",
                response_time_ms=self._elapsed_ms(start),
                error_message="Request timeout",
            )
        except httpx.ConnectError as e:
            return CheckResult(
                status="down",
                response_time_ms=self._elapsed_ms(start),
                error_message=f"Connection error: {e}",
            )
        except Exception as e:
            return CheckResult(
                status="down",
                response_time_ms=self._elapsed_ms(start),
                error_message=str(e) or type(e).__name__,
            )

        if not response.is_success:
            return CheckResult(
                status="down",
                response_time_ms=response_time,
                status_code=response.status_code,
                error_message=f"HTTP {response.status_code}",
            )

        body = response.text
        result = CheckResult(
            status="up",
            response_time_ms=response_time,
            status_code=response.status_code,
            body_excerpt=body[:self.body_max_length],
        )

        if monitor.enable_content_validation:
            result.content_valid = await self.content_validator.validate(monitor, body)
            if not result.content_valid:
                result.status = "down"
                result.error_message = "Content validation failed"

        logger.debug(f"Monitor {monitor.name}: {result.status} ({result.response_time_ms}ms)")
        return result

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
