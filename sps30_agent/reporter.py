"""Primary output: one tab-separated record per valid averaged reading."""

import logging
import math
import sys
from typing import List, Optional, TextIO

from sps30_agent.models import AveragedReading

logger = logging.getLogger(__name__)

# Particle size is sub-micron in practice; scale it so the integer keeps three decimals
PARTICLE_SIZE_OUTPUT_SCALE = 1000

FIELD_SEPARATOR = "\t"


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    magnitude = abs(value)
    whole = math.floor(magnitude)
    # The fractional part is exact; adding 0.5 first is not
    if magnitude - whole >= 0.5:
        whole += 1
    return -whole if value < 0 else whole


def format_record(reading: AveragedReading, epoch_seconds: int) -> str:
    """Render a reading as one output line (without newline).

    Args:
        reading: A valid averaged reading
        epoch_seconds: Emission timestamp

    Returns:
        Tab-separated integers: epoch seconds, pm1.0, pm2.5, pm4.0, pm10.0,
        nc0.5, nc1.0, nc2.5, nc4.0, nc10.0, particle size x PARTICLE_SIZE_OUTPUT_SCALE
    """
    values: List[int] = [
        round_half_away_from_zero(v)
        for v in (
            reading.mc_1p0,
            reading.mc_2p5,
            reading.mc_4p0,
            reading.mc_10p0,
            reading.nc_0p5,
            reading.nc_1p0,
            reading.nc_2p5,
            reading.nc_4p0,
            reading.nc_10p0,
        )
    ]
    values.append(
        round_half_away_from_zero(reading.typical_particle_size * PARTICLE_SIZE_OUTPUT_SCALE)
    )
    return FIELD_SEPARATOR.join(str(v) for v in [epoch_seconds, *values])


class Reporter:
    """Writes records to the primary output stream.

    Invalid readings are skipped silently on the primary stream so that
    consumers only ever see real data points.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        """Initialize reporter.

        Args:
            stream: Primary output. Default sys.stdout (looked up at emit time).
        """
        self._stream = stream

    def emit(self, reading: AveragedReading, epoch_seconds: int) -> bool:
        """Write one record for a valid reading.

        Returns:
            True if a record was written, False if the reading was invalid
        """
        if not reading.is_valid:
            logger.info("No valid samples in batch, nothing reported")
            return False

        stream = self._stream or sys.stdout
        stream.write(format_record(reading, epoch_seconds) + "\n")
        stream.flush()
        return True
