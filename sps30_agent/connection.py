"""Ownership of the serial link to the sensor."""

import logging
import threading
from typing import Callable, Optional

from sps30_agent.errors import Sps30Error
from sps30_agent.retry import RetryPolicy, retry_until_success
from sps30_agent.transport import Transport

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Opens the transport with unbounded fixed-delay retries and closes it.

    The link is only given up on when the stop event is set.
    """

    def __init__(
        self,
        port: str,
        baud: int = 115200,
        policy: Optional[RetryPolicy] = None,
        stop_event: Optional[threading.Event] = None,
        opener: Optional[Callable[[str, int], Transport]] = None,
    ) -> None:
        """Initialize manager.

        Args:
            port: Serial port name (e.g., "/dev/ttyUSB0")
            baud: Baud rate
            policy: Retry policy for open(). Default: 1s delay, no attempt limit.
            stop_event: Cancels the retry loop when set
            opener: Factory returning an open Transport. Default Transport.open.
        """
        self._port = port
        self._baud = baud
        self._policy = policy or RetryPolicy()
        self._stop_event = stop_event or threading.Event()
        self._opener = opener or Transport.open
        self._transport: Optional[Transport] = None

    def open(self) -> Transport:
        """Open the link, retrying until it succeeds.

        Returns:
            Open Transport, owned by this manager until close()

        Raises:
            AcquisitionCancelled: If the stop event is set first
            RetryExhausted: Only with a bounded policy
        """
        if self._transport is not None and self._transport.is_open:
            return self._transport

        self._transport = retry_until_success(
            lambda: self._opener(self._port, self._baud),
            self._policy,
            self._stop_event,
            f"UART init on {self._port}",
        )
        return self._transport

    def close(self) -> bool:
        """Release the link.

        Returns:
            True if closed cleanly (or nothing was open), False if closing failed
        """
        if self._transport is None:
            return True

        transport, self._transport = self._transport, None
        try:
            transport.close()
        except Sps30Error as e:
            logger.warning(f"Failed to close UART: {e}")
            return False
        return True

    @property
    def transport(self) -> Optional[Transport]:
        """Currently open transport, if any."""
        return self._transport
