"""
Shared Telemetry State

The refresh job writes and the publish job reads. The state is an immutable
snapshot swapped in a single assignment, so a reader always sees either the
previous or the next snapshot in full and never a half-applied update.
"""

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from utils.schemas import Reading


@dataclass(frozen=True)
class TelemetrySnapshot:
    base_temperature: float
    last_update: Optional[datetime] = None


class TelemetryState:
    """Single-writer register holding the latest TelemetrySnapshot."""

    def __init__(self, default_temperature: float) -> None:
        self._snapshot = TelemetrySnapshot(base_temperature=default_temperature)

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot

    def apply(self, reading: Reading) -> TelemetrySnapshot:
        snapshot = TelemetrySnapshot(
            base_temperature=reading.temperature,
            last_update=reading.timestamp,
        )
        self._snapshot = snapshot
        return snapshot


def draw_variation(
    minimum: float,
    maximum: float,
    rng: Optional[random.Random] = None,
) -> float:
    """Signed jitter whose magnitude is uniform in [minimum, maximum].

    The sign is drawn independently with equal probability. Inverted bounds
    are swapped rather than rejected.
    """
    rng = rng or random
    if minimum > maximum:
        minimum, maximum = maximum, minimum
    magnitude = rng.uniform(minimum, maximum)
    sign = 1 if rng.random() < 0.5 else -1
    return sign * magnitude
