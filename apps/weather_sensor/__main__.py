"""
Weather Sensor Module Entry Point

Allows execution via: python -m apps.weather_sensor

Delegates to scheduler for all execution modes (scheduled and RUN_ONCE).
"""

import asyncio

from apps.weather_sensor.scheduler import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
