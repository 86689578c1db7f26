"""
Telemetry Scheduler - Dual-Cadence Refresh and Publish

Runs two independent interval jobs on one APScheduler AsyncIOScheduler:

- weather_refresh:   fetch + parse the weather page, replace the shared snapshot
                     (every WEATHER_FETCH_INTERVAL_MS)
- telemetry_publish: jitter the latest snapshot and publish it over MQTT
                     (every MQTT_PUBLISH_INTERVAL_MS)

Both jobs fire immediately on start. A failing tick is logged and the
schedule carries on; neither job can cancel the other.

Usage:
    # Scheduled mode (default)
    python -m apps.weather_sensor

    # One refresh + one publish, then exit
    RUN_ONCE=true python -m apps.weather_sensor
"""

import asyncio
import logging
import os
import random
import signal
import sys
from datetime import datetime, timezone
from typing import Optional, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apps.weather_sensor.publisher import TelemetryGateway, publish_telemetry
from apps.weather_sensor.service import TemperatureService
from apps.weather_sensor.state import TelemetrySnapshot, TelemetryState
from utils.config import ConfigurationError, Settings, settings as default_settings
from utils.logging import setup_logging
from utils.mq import MQTTPublisher
from utils.schemas import PublishPayload, Reading

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "weather_refresh"
PUBLISH_JOB_ID = "telemetry_publish"


class ReadingSource(Protocol):
    async def fetch_current(self) -> Reading:
        ...


class Gateway(TelemetryGateway, Protocol):
    def disconnect(self) -> None:
        ...


class TelemetryScheduler:
    """
    Owns the refresh and publish jobs and the snapshot they share.

    Handles:
    - Schedule validation (ConfigurationError on bad intervals)
    - Immediate first run of both jobs
    - Per-tick error isolation
    - Idempotent stop
    """

    def __init__(
        self,
        service: ReadingSource,
        gateway: Gateway,
        config: Optional[Settings] = None,
        state: Optional[TelemetryState] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            service: Source of ground-truth readings
            gateway: Publisher the telemetry is sent through
            config: Settings to use, defaults to the global settings
            state: Shared state, created from DEFAULT_TEMPERATURE when omitted
            rng: Random generator for the publish variation

        Raises:
            ConfigurationError: If the schedule settings are invalid
        """
        self.config = config or default_settings
        self.config.validate_schedule()

        self.service = service
        self.gateway = gateway
        self.state = state or TelemetryState(self.config.DEFAULT_TEMPERATURE)
        self.rng = rng
        self.scheduler: AsyncIOScheduler | None = None
        self._stopped = False

    @property
    def refresh_interval_seconds(self) -> float:
        return self.config.WEATHER_FETCH_INTERVAL_MS / 1000

    @property
    def publish_interval_seconds(self) -> float:
        return self.config.MQTT_PUBLISH_INTERVAL_MS / 1000

    async def refresh(self) -> TelemetrySnapshot:
        """Fetch a reading and replace the shared snapshot with it."""
        reading = await self.service.fetch_current()
        snapshot = self.state.apply(reading)
        logger.info(
            "Base temperature refreshed",
            extra={
                "temperature": reading.temperature,
                "is_default": reading.is_default,
                "error": reading.error,
            },
        )
        return snapshot

    async def publish(self) -> PublishPayload:
        """Publish one jittered message derived from the current snapshot."""
        return await publish_telemetry(self.gateway, self.state.snapshot, self.config, self.rng)

    async def _run_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception as e:
            logger.error("Refresh tick failed", extra={"error": str(e)}, exc_info=True)

    async def _run_publish(self) -> None:
        try:
            await self.publish()
        except Exception as e:
            logger.error("Publish tick failed", extra={"error": str(e)})

    def start(self) -> None:
        """Schedule both jobs; must be called from inside the running event loop."""
        if self._stopped:
            raise RuntimeError("TelemetryScheduler has been stopped")
        if self.scheduler is not None:
            return

        now = datetime.now(timezone.utc)
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._run_refresh,
            trigger=IntervalTrigger(seconds=self.refresh_interval_seconds),
            id=REFRESH_JOB_ID,
            name="Weather page refresh",
            next_run_time=now,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._run_publish,
            trigger=IntervalTrigger(seconds=self.publish_interval_seconds),
            id=PUBLISH_JOB_ID,
            name="Telemetry publish",
            next_run_time=now,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self.scheduler.start()

        logger.info(
            "Telemetry jobs scheduled",
            extra={
                "refresh_interval_s": self.refresh_interval_seconds,
                "publish_interval_s": self.publish_interval_seconds,
            },
        )

    def stop(self) -> None:
        """Cancel future ticks and disconnect the gateway. A second call does nothing."""
        if self._stopped:
            return
        self._stopped = True

        if self.scheduler is not None:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            self.scheduler = None

        self.gateway.disconnect()
        logger.info("Telemetry scheduler stopped")


class WeatherSensorApp:
    """
    Process-level wiring: publisher, service, scheduler and signals.

    In RUN_ONCE mode performs one refresh and one publish and exits.
    """

    def __init__(
        self,
        run_once: bool = False,
        config: Optional[Settings] = None,
        publisher: Optional[MQTTPublisher] = None,
        service: Optional[ReadingSource] = None,
    ) -> None:
        self.run_once = run_once
        self.config = config or default_settings
        self.publisher = publisher or MQTTPublisher(self.config)
        self.service = service or TemperatureService(config=self.config)
        self.shutdown_event = asyncio.Event()

    def log_startup_info(self) -> None:
        logger.info(
            "Weather sensor starting",
            extra={
                "topic": self.config.MQTT_TOPIC,
                "refresh_interval_s": self.config.WEATHER_FETCH_INTERVAL_MS / 1000,
                "publish_interval_s": self.config.MQTT_PUBLISH_INTERVAL_MS / 1000,
                "source": self.config.WEATHER_SOURCE,
                "run_once": self.run_once,
            },
        )

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    async def start(self) -> None:
        """
        Connect, schedule and run until a shutdown signal arrives.

        Raises:
            ConfigurationError: If the schedule settings are invalid
            utils.mq.MQTTConnectionError: If the broker cannot be reached
        """
        self.log_startup_info()

        scheduler = TelemetryScheduler(self.service, self.publisher, self.config)

        await self.publisher.connect()

        if self.run_once:
            logger.info("Running in RUN_ONCE mode")
            try:
                await scheduler.refresh()
                await scheduler.publish()
            finally:
                scheduler.stop()
            return

        self.setup_signal_handlers()
        scheduler.start()
        logger.info("Waiting for shutdown signal...")

        try:
            await self.shutdown_event.wait()
        finally:
            logger.info("Shutting down telemetry scheduler")
            scheduler.stop()
        logger.info("Shutdown complete")


async def main() -> None:
    """Main entry point for the weather sensor."""
    setup_logging(level=default_settings.LOG_LEVEL, format_type=default_settings.LOG_FORMAT)
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    app = WeatherSensorApp(run_once=run_once)

    try:
        await app.start()
    except ConfigurationError as e:
        logger.error("Invalid schedule configuration", extra={"error": str(e)})
        sys.exit(1)
    except Exception as e:
        logger.error("Weather sensor failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
