"""Tests for link opening, retry policy and cancellation."""

import logging
import threading

import pytest

from fakes.fake_sps30 import FakeSps30Serial
from sps30_agent.connection import ConnectionManager
from sps30_agent.errors import AcquisitionCancelled, RetryExhausted, SerialIOError
from sps30_agent.retry import RetryPolicy, retry_until_success
from sps30_agent.transport import Transport


class FlakyOpener:
    """Opener failing a fixed number of times before handing out a fake port."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0
        self.fake = FakeSps30Serial()

    def __call__(self, port: str, baud: int) -> Transport:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise SerialIOError(f"Failed to open {port} at {baud} baud: busy")
        return Transport(self.fake)


def retry_warnings(caplog: pytest.LogCaptureFixture) -> list:
    return [
        r for r in caplog.records
        if r.levelno == logging.WARNING and "retrying" in r.getMessage()
    ]


def test_open_retries_until_success(caplog: pytest.LogCaptureFixture) -> None:
    """Test two failed opens produce exactly two retry diagnostics."""
    opener = FlakyOpener(failures=2)
    manager = ConnectionManager(
        "/dev/ttyFAKE", policy=RetryPolicy(delay_s=0.0), opener=opener
    )

    with caplog.at_level(logging.WARNING):
        transport = manager.open()

    assert transport.is_open
    assert opener.attempts == 3
    assert len(retry_warnings(caplog)) == 2
    assert "UART init on /dev/ttyFAKE" in retry_warnings(caplog)[0].getMessage()


def test_open_returns_existing_transport() -> None:
    """Test a second open() reuses the link."""
    opener = FlakyOpener(failures=0)
    manager = ConnectionManager("/dev/ttyFAKE", opener=opener)

    first = manager.open()
    second = manager.open()

    assert first is second
    assert opener.attempts == 1


def test_open_cancelled_by_stop_event() -> None:
    """Test a set stop event ends the otherwise unbounded retry loop."""
    stop_event = threading.Event()
    stop_event.set()
    opener = FlakyOpener(failures=100)
    manager = ConnectionManager(
        "/dev/ttyFAKE", policy=RetryPolicy(delay_s=0.0), stop_event=stop_event, opener=opener
    )

    with pytest.raises(AcquisitionCancelled):
        manager.open()
    assert opener.attempts == 0


def test_stop_event_interrupts_delay() -> None:
    """Test the stop event is checked between attempts."""
    stop_event = threading.Event()
    calls = []

    def failing() -> None:
        calls.append(1)
        stop_event.set()
        raise SerialIOError("nope")

    with pytest.raises(AcquisitionCancelled):
        retry_until_success(failing, RetryPolicy(delay_s=30.0), stop_event, "test op")
    assert len(calls) == 1


def test_bounded_policy_gives_up() -> None:
    """Test max_attempts turns the unbounded loop into a bounded one."""
    opener = FlakyOpener(failures=10)
    manager = ConnectionManager(
        "/dev/ttyFAKE", policy=RetryPolicy(delay_s=0.0, max_attempts=3), opener=opener
    )

    with pytest.raises(RetryExhausted) as exc_info:
        manager.open()

    assert exc_info.value.attempts == 3
    assert opener.attempts == 3


def test_policy_validation() -> None:
    """Test nonsensical policies are rejected."""
    with pytest.raises(ValueError):
        RetryPolicy(delay_s=-1.0)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_close_releases_link() -> None:
    """Test close() closes the port and forgets it."""
    opener = FlakyOpener(failures=0)
    manager = ConnectionManager("/dev/ttyFAKE", opener=opener)
    manager.open()

    assert manager.close()
    assert not opener.fake.is_open
    assert manager.transport is None


def test_close_failure_is_not_fatal(caplog: pytest.LogCaptureFixture) -> None:
    """Test a failing close is logged and reported, not raised."""

    class StuckPort(FakeSps30Serial):
        def close(self) -> None:
            raise OSError("device busy")

    manager = ConnectionManager("/dev/ttyFAKE", opener=lambda port, baud: Transport(StuckPort()))
    manager.open()

    with caplog.at_level(logging.WARNING):
        assert manager.close() is False

    assert any("Failed to close UART" in r.getMessage() for r in caplog.records)


def test_close_without_open() -> None:
    """Test close() before open() is a no-op."""
    assert ConnectionManager("/dev/ttyFAKE").close()
