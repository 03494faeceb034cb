"""SPS30 command set on top of the SHDLC transport.

SensorDriver is the boundary the session and acquisition loop talk to; every
call blocks until the sensor answers or the transport times out, and failures
surface as Sps30Error subclasses.
"""

import logging
import time
from typing import Protocol, Tuple

from sps30_agent import protocol
from sps30_agent.errors import InvalidConfigValue, Sps30Error
from sps30_agent.models import Sample, VersionInfo
from sps30_agent.transport import Transport

logger = logging.getLogger(__name__)


class SensorDriver(Protocol):
    """Blocking request/response operations of a particulate-matter sensor."""

    def probe(self) -> None:
        """Verify a sensor responds on the link."""
        ...

    def read_version(self) -> VersionInfo:
        """Read firmware, hardware and protocol versions."""
        ...

    def read_serial(self) -> str:
        """Read the sensor serial number."""
        ...

    def set_auto_clean_days(self, days: int) -> None:
        """Configure the automatic fan-cleaning interval."""
        ...

    def start_measurement(self) -> None:
        """Enter measurement mode."""
        ...

    def stop_measurement(self) -> None:
        """Return to idle mode."""
        ...

    def read_sample(self) -> Tuple[Sample, int]:
        """Read one sample.

        Returns:
            (sample, status_flag) where a non-zero status_flag means the
            sensor itself considers the measurement potentially inaccurate.
        """
        ...

    def sleep_device(self) -> None:
        """Enter low-power sleep (firmware >= 2.0)."""
        ...

    def wake_device(self) -> None:
        """Leave sleep mode (firmware >= 2.0)."""
        ...


class Sps30Driver:
    """SHDLC implementation of SensorDriver for the Sensirion SPS30."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def _execute(self, command: int, data: bytes = b"") -> protocol.MisoFrame:
        """Send one command frame and return the validated response."""
        # A reply that arrived after an earlier timeout would be read as ours
        self._transport.flush_input()
        self._transport.write_bytes(protocol.build_frame(command, data))
        return protocol.parse_frame(self._transport.read_frame(), command)

    def probe(self) -> None:
        """Wake the sensor if asleep, then read its serial number.

        Raises:
            Sps30Error: If the sensor does not answer
        """
        try:
            self.wake_device()
        except Sps30Error as e:
            # An awake sensor rejects wake-up; only the serial read decides
            logger.debug(f"Wake-up before probe ignored: {e}")
        self.read_serial()

    def read_version(self) -> VersionInfo:
        frame = self._execute(protocol.CMD_READ_VERSION)
        return protocol.decode_version(frame.data)

    def read_serial(self) -> str:
        frame = self._execute(protocol.CMD_DEVICE_INFO, bytes([protocol.DEVICE_INFO_SERIAL]))
        return protocol.decode_string(frame.data)

    def set_auto_clean_days(self, days: int) -> None:
        """Write the fan auto-cleaning interval.

        Args:
            days: Interval in days; 0 disables automatic cleaning

        Raises:
            InvalidConfigValue: If days does not fit the device register
            Sps30Error: If the sensor rejects the command
        """
        try:
            payload = protocol.encode_auto_clean_days(days)
        except ValueError as e:
            raise InvalidConfigValue(str(e)) from e
        self._execute(protocol.CMD_AUTO_CLEAN_INTERVAL, payload)

    def start_measurement(self) -> None:
        self._execute(
            protocol.CMD_START_MEASUREMENT,
            bytes([protocol.START_MEASUREMENT_SUBCMD, protocol.OUTPUT_FORMAT_FLOAT]),
        )

    def stop_measurement(self) -> None:
        self._execute(protocol.CMD_STOP_MEASUREMENT)

    def read_sample(self) -> Tuple[Sample, int]:
        """Read the latest measured values.

        Returns:
            (sample, status_flag); status_flag is the raw state byte when the
            device error flag is set, else 0

        Raises:
            Sps30Error: On timeout, malformed frame, or missing measurement data
        """
        frame = self._execute(protocol.CMD_READ_MEASUREMENT)
        sample = protocol.decode_measurement(frame.data)
        return sample, frame.state if frame.device_error_flag else 0

    def sleep_device(self) -> None:
        self._execute(protocol.CMD_SLEEP)

    def wake_device(self) -> None:
        """Send the 0xFF low pulse followed by the wake-up command."""
        self._transport.write_bytes(protocol.WAKE_PULSE)
        self._execute(protocol.CMD_WAKE_UP)
        time.sleep(protocol.DELAY_POST_WAKE)
