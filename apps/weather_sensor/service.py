"""
Temperature Service - Fetch, Extract, Stamp

Turns one page download into one Reading. Network failures never escape:
they become a default Reading carrying the error message. A page that
downloads but cannot be parsed yields a default Reading without an error.

Usage:
    service = TemperatureService()
    reading = await service.fetch_current()
"""

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from apps.weather_sensor.extractor import extract_reading
from apps.weather_sensor.fetcher import WeatherPageFetcher
from utils.config import Settings, settings as default_settings
from utils.schemas import Reading, utc_now

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    async def fetch(self) -> str:
        ...


class TemperatureService:
    """Produces ground-truth Readings for the configured city."""

    def __init__(
        self,
        fetcher: Optional[PageFetcher] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self.fetcher = fetcher or WeatherPageFetcher(self.config)

    def _reading(self, temperature: float, is_default: bool, error: Optional[str] = None) -> Reading:
        return Reading(
            temperature=temperature,
            timestamp=utc_now(),
            city=self.config.WEATHER_CITY,
            source=self.config.WEATHER_SOURCE,
            is_default=is_default,
            error=error,
        )

    async def fetch_current(self) -> Reading:
        """Fetch the page and extract the current temperature.

        Returns:
            Reading; is_default is True when the configured default was used
        """
        try:
            html = await self.fetcher.fetch()
        except (httpx.HTTPError, asyncio.TimeoutError, OSError) as e:
            message = str(e) or e.__class__.__name__
            logger.error(
                "Weather page fetch failed, using default temperature",
                extra={"url": self.config.WEATHER_URL, "error": message},
            )
            return self._reading(self.config.DEFAULT_TEMPERATURE, is_default=True, error=message)

        result = extract_reading(html, self.config)
        return self._reading(result.temperature, is_default=result.is_default)
