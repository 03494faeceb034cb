"""One-time identification and configuration of the sensor."""

import logging
import threading
from typing import Optional

from sps30_agent.driver import SensorDriver
from sps30_agent.errors import Sps30Error
from sps30_agent.models import SessionContext, VersionInfo
from sps30_agent.retry import RetryPolicy, retry_until_success

logger = logging.getLogger(__name__)

DEFAULT_AUTO_CLEAN_DAYS = 4


class SensorSession:
    """Probes, identifies and configures the sensor behind a driver.

    Only probing is mandatory; version, serial and auto-clean are best effort
    and degrade the resulting SessionContext instead of failing.
    """

    def __init__(
        self,
        driver: SensorDriver,
        auto_clean_days: int = DEFAULT_AUTO_CLEAN_DAYS,
        policy: Optional[RetryPolicy] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self._driver = driver
        self._auto_clean_days = auto_clean_days
        self._policy = policy or RetryPolicy()
        self._stop_event = stop_event or threading.Event()

    @property
    def driver(self) -> SensorDriver:
        return self._driver

    def start(self) -> SessionContext:
        """Run the startup sequence.

        Returns:
            SessionContext with whatever could be read

        Raises:
            AcquisitionCancelled: If the stop event is set while probing
        """
        self.probe()
        version = self._read_version()
        serial = self._read_serial()
        self._configure_auto_clean()

        context = SessionContext(version=version, serial=serial)
        if not context.supports_sleep:
            logger.info(
                f"Sleep/wake disabled (firmware major {context.firmware_major or 'unknown'})"
            )
        return context

    def probe(self) -> None:
        """Probe until the sensor answers."""
        retry_until_success(
            self._driver.probe, self._policy, self._stop_event, "SPS30 sensor probing"
        )
        logger.info("SPS30 sensor probing successful")

    def _read_version(self) -> Optional[VersionInfo]:
        try:
            version = self._driver.read_version()
        except Sps30Error as e:
            logger.error(f"Error reading version information: {e}")
            return None
        logger.info(str(version))
        return version

    def _read_serial(self) -> Optional[str]:
        try:
            serial = self._driver.read_serial()
        except Sps30Error as e:
            logger.error(f"Error reading serial: {e}")
            return None
        logger.info(f"SPS30 Serial: {serial}")
        return serial

    def _configure_auto_clean(self) -> None:
        try:
            self._driver.set_auto_clean_days(self._auto_clean_days)
        except Sps30Error as e:
            logger.error(f"Error setting the auto-clean interval: {e}")
            return
        logger.info(f"Auto-clean interval set to {self._auto_clean_days} days")
