"""Custom exceptions for the SPS30 acquisition agent."""

from typing import Optional


class Sps30Error(Exception):
    """Base exception for all SPS30 agent errors."""

    pass


class SerialIOError(Sps30Error):
    """Raised when serial communication fails (port closed, open failed, write error)."""

    pass


class ResponseTimeout(Sps30Error):
    """Raised when the sensor sends no response frame within the read timeout.

    A sleeping or disconnected sensor looks exactly like this.
    """

    pass


class FrameError(Sps30Error):
    """Raised when a received SHDLC frame is malformed (delimiters, stuffing, checksum, length)."""

    def __init__(self, message: str, raw: bytes = b"") -> None:
        super().__init__(message)
        self.raw = raw


class DeviceCommandError(Sps30Error):
    """Raised when the sensor answers a command with a non-zero error code.

    Attributes:
        code: Command error code from the MISO state byte (error flag bit cleared).
        command: Command byte the error refers to.
    """

    def __init__(self, code: int, command: int, message: Optional[str] = None) -> None:
        self.code = code
        self.command = command
        super().__init__(
            message or f"Command 0x{command:02X} failed with device error 0x{code:02X}"
        )


class InvalidConfigValue(Sps30Error):
    """Raised when attempting to send an out-of-range configuration parameter."""

    pass


class AcquisitionCancelled(Sps30Error):
    """Raised when a retry loop is interrupted by the stop event."""

    pass


class RetryExhausted(Sps30Error):
    """Raised when a bounded retry policy runs out of attempts."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
