"""Connectivity probe - gates all monitor checks on outbound reachability."""
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Checks that this host can reach a well-known external endpoint.

    When it cannot, monitor checks are skipped so a local outage does not mark
    every monitor as down.
    """

    def __init__(
        self,
        url: str = "https://www.google.com",
        timeout: float = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def has_connectivity(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(self.url)
            return response.is_success
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {type(e).__name__}: {e}")
            return False
