"""Serial transport layer for SPS30 communication."""

import logging
from typing import Optional, Protocol

from sps30_agent import protocol
from sps30_agent.errors import SerialIOError

logger = logging.getLogger(__name__)

_DELIMITER = bytes([protocol.FRAME_DELIMITER])


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def write(self, data: bytes) -> int:
        """Write bytes to serial port."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes from serial port."""
        ...

    def read_until(self, expected: bytes = b"\n", size: Optional[int] = None) -> bytes:
        """Read until expected sequence, size exceeded, or timeout."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def reset_input_buffer(self) -> None:
        """Flush input buffer."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


class Transport:
    """Wrapper around pyserial with SHDLC frame helpers.

    Knows where frames start and end on the wire; it does not interpret them.
    """

    def __init__(self, serial_port: SerialLike) -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeSps30Serial for testing)
        """
        self._port = serial_port

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = 115200,
        timeout_s: float = protocol.RESPONSE_TIMEOUT,
    ) -> "Transport":
        """Open a real serial port (requires pyserial).

        Args:
            port: Serial port device name (e.g., "/dev/ttyUSB0")
            baud: Baud rate. The SPS30 UART runs at 115200 only.
            timeout_s: Read timeout in seconds, bounds every command round trip.

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            SerialIOError: If port cannot be opened
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise SerialIOError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                write_timeout=timeout_s,
                exclusive=True,
            )
            logger.info(f"Opened serial port {port} at {baud} baud, timeout={timeout_s}s")
            return cls(ser)
        except Exception as e:
            raise SerialIOError(f"Failed to open {port} at {baud} baud: {e}") from e

    def close(self) -> None:
        """Close the serial port.

        Raises:
            SerialIOError: If the port refuses to close
        """
        if not self._port.is_open:
            return
        try:
            self._port.close()
        except Exception as e:
            raise SerialIOError(f"Failed to close port: {e}") from e
        logger.info("Closed serial port")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes to port.

        Args:
            data: Raw bytes to send (a complete frame or the wake pulse)

        Raises:
            SerialIOError: If write fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            sent = self._port.write(data)
            self._port.flush()  # Force immediate transmission
            logger.debug(f"Sent {sent} bytes: {protocol.format_bytes(data)}")
        except Exception as e:
            raise SerialIOError(f"Failed to write to port: {e}") from e

    def read_frame(self) -> bytes:
        """Read one delimited frame from the sensor.

        Bytes before the first delimiter are discarded.

        Returns:
            Frame bytes including both delimiters, a truncated frame if the
            timeout hit mid-frame, or b"" if nothing arrived

        Raises:
            SerialIOError: If port is closed or read fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            lead = self._port.read_until(_DELIMITER)
            if not lead.endswith(_DELIMITER):
                if lead:
                    logger.debug(f"Discarded {len(lead)} stray bytes: {protocol.format_bytes(lead)}")
                return b""

            body = self._port.read_until(_DELIMITER)
            if body == _DELIMITER:
                # The first delimiter closed a previous frame; this one opens ours
                body = self._port.read_until(_DELIMITER)
        except Exception as e:
            raise SerialIOError(f"Failed to read frame: {e}") from e

        frame = _DELIMITER + body
        logger.debug(f"Received frame: {protocol.format_bytes(frame)}")
        return frame

    def flush_input(self) -> None:
        """Discard all pending input from the sensor.

        Raises:
            SerialIOError: If port is closed
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            self._port.reset_input_buffer()
            logger.debug("Flushed input buffer")
        except Exception as e:
            raise SerialIOError(f"Failed to flush input: {e}") from e
