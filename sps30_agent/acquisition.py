"""Acquisition state machine: measure, average, report, rest, repeat."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from sps30_agent.aggregator import average_batch
from sps30_agent.batch import Batch
from sps30_agent.driver import SensorDriver
from sps30_agent.errors import Sps30Error
from sps30_agent.models import AcquisitionState, Sample, SessionContext
from sps30_agent.reporter import Reporter

logger = logging.getLogger(__name__)


class LoopExit(Enum):
    """Why AcquisitionLoop.run() returned."""

    COMPLETED = "completed"  # max_cycles reached
    CANCELLED = "cancelled"  # stop event set
    START_FAILED = "start_failed"  # start measurement rejected, fatal


class AcquisitionLoop:
    """Drives repeated measurement cycles against one sensor.

    Each cycle: start measurement, collect samples_per_batch samples at
    sample_interval_s cadence, average and report, stop measurement, sleep
    the sensor if its firmware supports it, rest, wake it again.

    Only a failed start is fatal. Read failures and device-flagged samples
    become invalid slots; stop/sleep/wake failures are logged and ignored.
    """

    def __init__(
        self,
        driver: SensorDriver,
        context: SessionContext,
        reporter: Optional[Reporter] = None,
        samples_per_batch: int = 60,
        sample_interval_s: float = 1.0,
        rest_duration_s: float = 60.0,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize loop.

        Args:
            driver: Ready sensor driver (probed by SensorSession)
            context: Session state; gates sleep/wake
            reporter: Primary output. Default writes to stdout.
            samples_per_batch: Samples per cycle
            sample_interval_s: Cadence between read attempts
            rest_duration_s: Pause between cycles
            stop_event: Cooperative cancellation; all delays wait on it
            clock: Wall clock for record timestamps (epoch seconds)
        """
        if samples_per_batch < 1:
            raise ValueError(f"samples_per_batch must be >= 1, got {samples_per_batch}")

        self._driver = driver
        self._context = context
        self._reporter = reporter or Reporter()
        self._samples_per_batch = samples_per_batch
        self._sample_interval_s = sample_interval_s
        self._rest_duration_s = rest_duration_s
        self._stop_event = stop_event or threading.Event()
        self._clock = clock
        self._state = AcquisitionState.IDLE
        self._cycles = 0

    # ========================================================================
    # Public API
    # ========================================================================

    def run(self, max_cycles: Optional[int] = None) -> LoopExit:
        """Run cycles until cancelled, a start failure, or max_cycles.

        Args:
            max_cycles: Stop after this many complete cycles. None runs forever.
                        The last of a bounded run returns right after stopping
                        measurement, without the rest.

        Returns:
            LoopExit reason
        """
        logger.info(
            f"Acquisition loop started: {self._samples_per_batch} samples every "
            f"{self._sample_interval_s}s, rest {self._rest_duration_s}s, "
            f"sleep/wake {'enabled' if self._context.supports_sleep else 'disabled'}"
        )
        completed = 0
        while not self._stop_event.is_set():
            if max_cycles is not None and completed >= max_cycles:
                self._state = AcquisitionState.STOPPED
                logger.info(f"Acquisition loop finished after {completed} cycles")
                return LoopExit.COMPLETED

            last = max_cycles is not None and completed + 1 >= max_cycles
            result = self.run_cycle(rest=not last)
            if result is not None:
                return result
            completed += 1

        self._state = AcquisitionState.STOPPED
        logger.info("Acquisition loop cancelled")
        return LoopExit.CANCELLED

    def run_cycle(self, rest: bool = True) -> Optional[LoopExit]:
        """Run one full cycle.

        Args:
            rest: Sleep and rest after reporting. False only stops measurement,
                  for the last cycle of a bounded run.

        Returns:
            None if the loop may continue, otherwise the reason to stop
        """
        self._state = AcquisitionState.IDLE
        try:
            self._driver.start_measurement()
        except Sps30Error as e:
            logger.error(f"Error starting measurement: {e}")
            self._state = AcquisitionState.STOPPED
            return LoopExit.START_FAILED

        self._state = AcquisitionState.MEASURING
        logger.info("Measurements started")

        batch = self._collect_batch()
        if not batch.is_complete:
            logger.info(f"Cancelled after {len(batch)}/{batch.capacity} samples")
            self._stop_measurement()
            self._state = AcquisitionState.STOPPED
            return LoopExit.CANCELLED

        self._state = AcquisitionState.AVERAGING
        reading = average_batch(batch)
        logger.debug(f"Averaged {batch.valid_count}/{len(batch)} valid samples")
        self._reporter.emit(reading, int(self._clock()))

        if rest:
            self._rest()
        else:
            self._stop_measurement()
            self._state = AcquisitionState.IDLE
        self._cycles += 1
        return None

    @property
    def state(self) -> AcquisitionState:
        """Current acquisition state."""
        return self._state

    @property
    def cycles(self) -> int:
        """Number of cycles completed so far."""
        return self._cycles

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _collect_batch(self) -> Batch:
        """Fill a batch in index order; returns early (incomplete) if cancelled."""
        batch = Batch(self._samples_per_batch)
        for index in range(self._samples_per_batch):
            if self._stop_event.is_set():
                break
            started = time.monotonic()
            batch.append(self._read_slot(index))

            # Cadence counts from the start of the read attempt, success or not
            remaining = self._sample_interval_s - (time.monotonic() - started)
            if remaining > 0 and self._stop_event.wait(timeout=remaining):
                break
        return batch

    def _read_slot(self, index: int) -> Sample:
        try:
            sample, status = self._driver.read_sample()
        except Sps30Error as e:
            logger.warning(f"Error reading measurement {index}: {e}")
            return Sample.invalid()

        if status:
            logger.warning(
                f"Chip state: 0x{status:02X} - measurement {index} may not be accurate, discarded"
            )
            return sample.invalidated()

        if not sample.is_finite:
            logger.warning(f"Measurement {index} contains non-finite values, discarded")
            return sample.invalidated()

        logger.debug(
            f"Sample {index}: pm1.0={sample.mc_1p0:.2f} pm2.5={sample.mc_2p5:.2f} "
            f"pm4.0={sample.mc_4p0:.2f} pm10.0={sample.mc_10p0:.2f} "
            f"nc0.5={sample.nc_0p5:.2f} nc1.0={sample.nc_1p0:.2f} "
            f"nc2.5={sample.nc_2p5:.2f} nc4.0={sample.nc_4p0:.2f} "
            f"nc10.0={sample.nc_10p0:.2f} tps={sample.typical_particle_size:.2f}"
        )
        return sample

    def _stop_measurement(self) -> None:
        try:
            self._driver.stop_measurement()
        except Sps30Error as e:
            logger.warning(f"Stopping measurement failed: {e}")

    def _rest(self) -> None:
        """Stop, optionally sleep, wait, optionally wake."""
        self._state = AcquisitionState.RESTING
        self._stop_measurement()

        if self._context.supports_sleep:
            try:
                self._driver.sleep_device()
                self._state = AcquisitionState.ASLEEP
            except Sps30Error as e:
                logger.warning(f"Entering sleep failed: {e}")

        logger.info(f"No measurements for {self._rest_duration_s}s")
        self._stop_event.wait(timeout=self._rest_duration_s)

        if self._context.supports_sleep:
            try:
                self._driver.wake_device()
            except Sps30Error as e:
                logger.warning(f"Error waking up sensor: {e}")

        self._state = AcquisitionState.IDLE
