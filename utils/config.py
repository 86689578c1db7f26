"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    topic = settings.MQTT_TOPIC
    selectors = settings.TEMP_SELECTORS

List settings (TEMP_SELECTORS, TEMP_PATTERNS) and HTTP_HEADERS accept JSON
when supplied through the environment.
"""

from functools import lru_cache
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings


class ConfigurationError(ValueError):
    """Raised when settings cannot drive a valid schedule."""


DEFAULT_TEMP_SELECTORS = [
    ".current-weather-card .temperature",
    ".current-weather .temp",
    ".current-weather .temperature",
    ".current-weather-card .temp",
    ".current-weather-info .temp",
    ".current-weather-info .temperature",
    ".current-weather .current-weather-card .temp",
    ".current-weather .current-weather-card .temperature",
    '[data-qa="curTemp"]',
    ".temp",
    ".temperature",
]

DEFAULT_TEMP_PATTERNS = [
    r"((?<![\d.])-?\d{1,2}(?:\.\d+)?)\s*°?C",
    r"((?<![\d.])-?\d{1,2}(?:\.\d+)?)\s*°?F",
    r"((?<![\d.])-?\d{1,2}(?:\.\d+)?)\s*degrees",
]

DEFAULT_HTTP_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MQTT Configuration
    MQTT_BROKER_URL: str = Field(default="mqtt://broker.emqx.io")
    MQTT_BROKER_PORT: int = Field(default=1883)
    MQTT_TOPIC: str = Field(default="kiot/zenit/notebook/temp-sensor")
    MQTT_CLIENT_ID: str = Field(default_factory=lambda: f"seoul-weather-sensor-{uuid4().hex[:8]}")
    MQTT_USERNAME: str = Field(default="")
    MQTT_PASSWORD: str = Field(default="")
    MQTT_KEEPALIVE: int = Field(default=60)
    MQTT_CONNECT_TIMEOUT_SECONDS: float = Field(default=4.0)
    MQTT_RECONNECT_PERIOD_SECONDS: int = Field(default=1)
    MQTT_MAX_RECONNECT_ATTEMPTS: int = Field(default=5)
    MQTT_QOS: int = Field(default=1, ge=0, le=2)
    MQTT_RETAIN: bool = Field(default=False)
    MQTT_PUBLISH_TIMEOUT_SECONDS: float = Field(default=10.0)

    # Publishing Configuration
    MQTT_PUBLISH_INTERVAL_MS: int = Field(default=10_000)
    VARIATION_MIN: float = Field(default=0.1)
    VARIATION_MAX: float = Field(default=0.5)

    # Weather Source Configuration
    WEATHER_FETCH_INTERVAL_MS: int = Field(default=300_000)
    WEATHER_CITY: str = Field(default="Seoul")
    WEATHER_SOURCE: str = Field(default="accuweather-web")
    WEATHER_URL: str = Field(
        default="https://www.accuweather.com/en/kr/seoul/226081/weather-forecast/226081"
    )
    DEFAULT_TEMPERATURE: float = Field(default=22.2)

    # HTTP Configuration
    HTTP_USER_AGENT: str = Field(
        default=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
        )
    )
    HTTP_HEADERS: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HTTP_HEADERS))
    HTTP_TIMEOUT_SECONDS: float = Field(default=10.0)
    FETCH_MAX_ATTEMPTS: int = Field(default=1, ge=1)
    FETCH_RETRY_WAIT_SECONDS: float = Field(default=5.0, ge=0)

    # Temperature Parsing Configuration
    MIN_TEMP: float = Field(default=-50)
    MAX_TEMP: float = Field(default=60)
    TEMP_SELECTORS: list[str] = Field(default_factory=lambda: list(DEFAULT_TEMP_SELECTORS))
    TEMP_PATTERNS: list[str] = Field(default_factory=lambda: list(DEFAULT_TEMP_PATTERNS))

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="seoul-weather-sensor")
    APP_VERSION: str = Field(default="0.1.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        frozen = True

    @property
    def broker_host(self) -> str:
        """Hostname part of MQTT_BROKER_URL (bare hostnames are accepted)."""
        parsed = urlparse(self.MQTT_BROKER_URL)
        if parsed.hostname:
            return parsed.hostname
        return self.MQTT_BROKER_URL

    @property
    def broker_uses_tls(self) -> bool:
        return urlparse(self.MQTT_BROKER_URL).scheme in ("mqtts", "ssl")

    def validate_schedule(self) -> None:
        """Check the settings that drive the periodic jobs.

        Raises:
            ConfigurationError: If an interval is non-positive, a variation
                bound is negative, or the valid temperature range is inverted
        """
        if self.WEATHER_FETCH_INTERVAL_MS <= 0:
            raise ConfigurationError(
                f"WEATHER_FETCH_INTERVAL_MS must be positive, got {self.WEATHER_FETCH_INTERVAL_MS}"
            )
        if self.MQTT_PUBLISH_INTERVAL_MS <= 0:
            raise ConfigurationError(
                f"MQTT_PUBLISH_INTERVAL_MS must be positive, got {self.MQTT_PUBLISH_INTERVAL_MS}"
            )
        if self.VARIATION_MIN < 0 or self.VARIATION_MAX < 0:
            raise ConfigurationError("VARIATION_MIN and VARIATION_MAX must not be negative")
        if self.MIN_TEMP > self.MAX_TEMP:
            raise ConfigurationError(
                f"MIN_TEMP ({self.MIN_TEMP}) is greater than MAX_TEMP ({self.MAX_TEMP})"
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
