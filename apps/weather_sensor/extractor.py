"""
Temperature Extractor - Multi-Strategy HTML Parsing

Recovers the current temperature from a weather page whose markup changes
without notice. Three strategies are tried in a fixed order and the first
candidate inside the valid range wins:

1. selector:        configured CSS selectors, first matching element each
2. pattern:         regular expressions over the page text
3. structured_data: <script type="application/ld+json"> blocks

When every strategy comes up empty the configured default is returned. The
extractor performs no I/O and never raises for malformed markup.

Usage:
    from apps.weather_sensor.extractor import extract

    temperature = extract(html)
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import orjson
from bs4 import BeautifulSoup
from bs4.exceptions import ParserRejectedMarkup
from soupsieve import SelectorSyntaxError

from utils.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^\d.\-]")
_LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


@dataclass(frozen=True)
class ExtractionResult:
    temperature: float
    strategy: Optional[str]

    @property
    def is_default(self) -> bool:
        return self.strategy is None


def parse_number(raw: Any) -> Optional[float]:
    """Strip everything but digits, dots and minus signs, then read the leading number.

    "18.5°C" -> 18.5, "-3°" -> -3.0, "n/a" -> None
    """
    if raw is None or isinstance(raw, bool):
        return None
    match = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", str(raw)))
    if match is None:
        return None
    return float(match.group())


def is_valid_temperature(value: Optional[float], config: Settings) -> bool:
    return (
        value is not None
        and math.isfinite(value)
        and config.MIN_TEMP <= value <= config.MAX_TEMP
    )


def by_selectors(soup: BeautifulSoup, config: Settings) -> Optional[float]:
    for selector in config.TEMP_SELECTORS:
        try:
            element = soup.select_one(selector)
        except SelectorSyntaxError:
            logger.warning("Skipping invalid CSS selector", extra={"selector": selector})
            continue
        if element is None:
            continue
        value = parse_number(element.get_text())
        if is_valid_temperature(value, config):
            return value
    return None


def match_patterns(text: str, config: Settings) -> Optional[float]:
    for raw_pattern in config.TEMP_PATTERNS:
        try:
            pattern = re.compile(raw_pattern)
        except re.error:
            logger.warning("Skipping invalid temperature pattern", extra={"pattern": raw_pattern})
            continue
        for match in pattern.finditer(text):
            value = parse_number(match.group(0))
            if is_valid_temperature(value, config):
                return value
    return None


def by_patterns(soup: BeautifulSoup, config: Settings) -> Optional[float]:
    return match_patterns((soup.body or soup).get_text(" "), config)


def _json_objects(soup: BeautifulSoup) -> Iterator[dict]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            continue
        if isinstance(data, dict):
            yield data
        elif isinstance(data, list):
            yield from (item for item in data if isinstance(item, dict))


def by_structured_data(soup: BeautifulSoup, config: Settings) -> Optional[float]:
    for data in _json_objects(soup):
        if "temperature" not in data:
            continue
        value = parse_number(data["temperature"])
        if is_valid_temperature(value, config):
            return value
    return None


STRATEGIES: tuple[tuple[str, Callable[[BeautifulSoup, Settings], Optional[float]]], ...] = (
    ("selector", by_selectors),
    ("pattern", by_patterns),
    ("structured_data", by_structured_data),
)


def _default_result(config: Settings) -> ExtractionResult:
    logger.info(
        "Temperature parsing failed, using default",
        extra={"temperature": config.DEFAULT_TEMPERATURE},
    )
    return ExtractionResult(temperature=config.DEFAULT_TEMPERATURE, strategy=None)


def _from_raw_text(html: str, config: Settings) -> ExtractionResult:
    # Only the pattern strategy can run without a parse tree.
    value = match_patterns(html, config)
    if value is None:
        return _default_result(config)
    logger.info("Temperature parsed", extra={"strategy": "pattern", "temperature": value})
    return ExtractionResult(temperature=value, strategy="pattern")


def extract_reading(html: Optional[str], config: Optional[Settings] = None) -> ExtractionResult:
    """Run the strategy chain and report which strategy produced the value.

    Args:
        html: Raw page markup (may be empty or malformed)
        config: Settings to use, defaults to the global settings

    Returns:
        ExtractionResult whose strategy is None when the default was used
    """
    config = config or default_settings
    try:
        soup = BeautifulSoup(html or "", "html.parser")
    except ParserRejectedMarkup as e:
        logger.warning("Markup rejected by parser, scanning raw text", extra={"error": str(e)})
        return _from_raw_text(html or "", config)

    for name, strategy in STRATEGIES:
        try:
            value = strategy(soup, config)
        except Exception as e:
            logger.warning(
                "Extraction strategy failed", extra={"strategy": name, "error": str(e)}
            )
            continue
        if value is not None:
            logger.info("Temperature parsed", extra={"strategy": name, "temperature": value})
            return ExtractionResult(temperature=value, strategy=name)

    return _default_result(config)


def extract(html: Optional[str], config: Optional[Settings] = None) -> float:
    """Return a validated scraped temperature or the configured default."""
    return extract_reading(html, config).temperature
