"""
Weather Page Fetcher

Issues the HTTP GET against the weather page with browser-like headers and
returns the raw HTML. Transport errors (timeouts, DNS, TLS, non-2xx status)
are raised as httpx.HTTPError subclasses; absorbing them is the caller's job.
"""

import logging
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class WeatherPageFetcher:
    """Fetches the configured weather page."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Settings to use, defaults to the global settings
            transport: Optional httpx transport (used to stub the network)
        """
        self.config = config or default_settings
        self._transport = transport

    def build_headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.HTTP_USER_AGENT, **self.config.HTTP_HEADERS}

    async def _get(self) -> str:
        async with httpx.AsyncClient(
            headers=self.build_headers(),
            timeout=self.config.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.get(self.config.WEATHER_URL)
            response.raise_for_status()
            return response.text

    async def fetch(self) -> str:
        """Download the weather page.

        Returns:
            Response body as text

        Raises:
            httpx.HTTPError: If the request fails after FETCH_MAX_ATTEMPTS attempts
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.config.FETCH_MAX_ATTEMPTS),
            wait=wait_exponential(
                multiplier=1,
                min=min(1, self.config.FETCH_RETRY_WAIT_SECONDS),
                max=self.config.FETCH_RETRY_WAIT_SECONDS,
            ),
            reraise=True,
        ):
            with attempt:
                html = await self._get()

        logger.debug(
            "Fetched weather page",
            extra={"url": self.config.WEATHER_URL, "bytes": len(html)},
        )
        return html
