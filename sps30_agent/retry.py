"""Fixed-delay retry policy with cooperative cancellation."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from sps30_agent.errors import AcquisitionCancelled, RetryExhausted, Sps30Error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to retry a failing operation.

    Attributes:
        delay_s: Fixed delay between attempts (no backoff).
        max_attempts: Give up after this many attempts; None retries forever.
    """

    delay_s: float = 1.0
    max_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.delay_s < 0:
            raise ValueError(f"delay_s must be >= 0, got {self.delay_s}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


def retry_until_success(
    operation: Callable[[], T],
    policy: RetryPolicy,
    stop_event: threading.Event,
    description: str,
) -> T:
    """Call operation until it returns without raising Sps30Error.

    Every failure logs exactly one warning before the delay.

    Args:
        operation: Zero-argument callable to attempt
        policy: Delay and attempt limit
        stop_event: Checked before each attempt and during each delay
        description: Human-readable name used in diagnostics (e.g. "UART init")

    Returns:
        Whatever operation returned

    Raises:
        AcquisitionCancelled: If stop_event is set before success
        RetryExhausted: If policy.max_attempts attempts all failed
    """
    attempt = 0
    while not stop_event.is_set():
        attempt += 1
        try:
            return operation()
        except Sps30Error as e:
            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                raise RetryExhausted(
                    f"{description} failed after {attempt} attempts: {e}", attempt
                ) from e
            logger.warning(
                f"{description} failed (attempt {attempt}): {e}; retrying in {policy.delay_s}s"
            )
        # Event.wait for cancellable sleep
        if stop_event.wait(timeout=policy.delay_s):
            break

    raise AcquisitionCancelled(f"{description} cancelled after {attempt} attempts")
