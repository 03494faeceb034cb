"""Tests for the acquisition state machine and its failure policy."""

import io
import logging
import threading
from typing import List, Optional

import pytest

from fakes.fake_sps30 import FakeSps30Serial
from fakes.scripted_driver import ScriptedDriver
from sps30_agent.acquisition import AcquisitionLoop, LoopExit
from sps30_agent.driver import SensorDriver, Sps30Driver
from sps30_agent.errors import ResponseTimeout
from sps30_agent.models import AcquisitionState, Sample, SessionContext, VersionInfo
from sps30_agent.reporter import Reporter
from sps30_agent.transport import Transport

FW2 = SessionContext(version=VersionInfo(2, 2, 7, 2, 0), serial="X")
FW1 = SessionContext(version=VersionInfo(1, 0, 7, 1, 0), serial="X")
UNKNOWN = SessionContext()


def make_loop(
    driver: SensorDriver,
    context: SessionContext = FW2,
    samples: int = 3,
    stream: Optional[io.StringIO] = None,
    stop_event: Optional[threading.Event] = None,
    interval: float = 0.0,
) -> AcquisitionLoop:
    return AcquisitionLoop(
        driver,
        context,
        reporter=Reporter(stream if stream is not None else io.StringIO()),
        samples_per_batch=samples,
        sample_interval_s=interval,
        rest_duration_s=0.0,
        stop_event=stop_event,
        clock=lambda: 1700000000.7,
    )


def test_cycle_call_sequence_with_sleep() -> None:
    """Test one cycle issues start, N reads, stop, sleep, wake in order."""
    driver = ScriptedDriver()
    loop = make_loop(driver, samples=3)

    assert loop.run_cycle() is None
    assert driver.calls == [
        "start_measurement",
        "read_sample",
        "read_sample",
        "read_sample",
        "stop_measurement",
        "sleep_device",
        "wake_device",
    ]
    assert loop.state == AcquisitionState.IDLE
    assert loop.cycles == 1


@pytest.mark.parametrize("context", [FW1, UNKNOWN])
def test_no_sleep_or_wake_below_firmware_2(context: SessionContext) -> None:
    """Test sleep/wake are never issued for firmware < 2 or unknown version."""
    driver = ScriptedDriver()
    loop = make_loop(driver, context=context, samples=2)

    loop.run(max_cycles=5)

    assert driver.call_count("sleep_device") == 0
    assert driver.call_count("wake_device") == 0
    assert driver.call_count("start_measurement") == 5
    assert driver.call_count("stop_measurement") == 5


def test_start_failure_is_fatal(caplog: pytest.LogCaptureFixture) -> None:
    """Test a rejected start ends the loop without reading anything."""
    driver = ScriptedDriver(failing={"start_measurement"})
    stream = io.StringIO()
    loop = make_loop(driver, stream=stream)

    with caplog.at_level(logging.ERROR):
        result = loop.run()

    assert result == LoopExit.START_FAILED
    assert loop.state == AcquisitionState.STOPPED
    assert driver.calls == ["start_measurement"]
    assert stream.getvalue() == ""
    assert any("Error starting measurement" in r.getMessage() for r in caplog.records)


def test_last_bounded_cycle_skips_rest() -> None:
    """Test a bounded run returns after stopping measurement on its last cycle."""
    driver = ScriptedDriver()
    loop = make_loop(driver, samples=2)

    assert loop.run(max_cycles=2) == LoopExit.COMPLETED
    assert driver.calls[-4:] == [
        "start_measurement",
        "read_sample",
        "read_sample",
        "stop_measurement",
    ]
    assert driver.call_count("sleep_device") == 1
    assert driver.call_count("wake_device") == 1
    assert loop.state == AcquisitionState.STOPPED


def test_record_emitted_per_cycle() -> None:
    """Test each cycle emits one line stamped with the clock at emission."""
    driver = ScriptedDriver(reads=[(Sample(mc_1p0=2.0, typical_particle_size=1.5), 0)])
    stream = io.StringIO()
    loop = make_loop(driver, samples=4, stream=stream)

    loop.run(max_cycles=2)

    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("1700000000\t2\t")
    assert lines[0].endswith("\t1500")


def test_read_failure_marks_slot_invalid(caplog: pytest.LogCaptureFixture) -> None:
    """Test a failed read becomes an invalid sample and the batch carries on."""
    driver = ScriptedDriver(
        reads=[
            (Sample(mc_1p0=2.0, typical_particle_size=1.5), 0),
            ResponseTimeout("no answer"),
            (Sample(mc_1p0=4.0, typical_particle_size=2.5), 0),
        ]
    )
    stream = io.StringIO()
    loop = make_loop(driver, samples=3, stream=stream)

    with caplog.at_level(logging.WARNING):
        loop.run(max_cycles=1)

    assert driver.call_count("read_sample") == 3
    line = stream.getvalue().strip()
    fields = line.split("\t")
    assert fields[1] == "3"
    assert fields[-1] == "2000"
    assert any("Error reading measurement 1" in r.getMessage() for r in caplog.records)


def test_flagged_sample_is_discarded(caplog: pytest.LogCaptureFixture) -> None:
    """Test samples carrying the device status flag do not enter the average."""
    driver = ScriptedDriver(
        reads=[
            (Sample(mc_1p0=10.0, typical_particle_size=1.0), 0),
            (Sample(mc_1p0=500.0, typical_particle_size=1.0), 0x80),
        ]
    )
    stream = io.StringIO()
    loop = make_loop(driver, samples=2, stream=stream)

    with caplog.at_level(logging.WARNING):
        loop.run(max_cycles=1)

    fields = stream.getvalue().strip().split("\t")
    assert fields[1] == "10"
    assert any("Chip state: 0x80" in r.getMessage() for r in caplog.records)


def test_all_invalid_cycle_emits_nothing() -> None:
    """Test a batch without valid samples is silently skipped but the cycle completes."""
    driver = ScriptedDriver(reads=[(Sample.invalid(), 0)])
    stream = io.StringIO()
    loop = make_loop(driver, samples=2, stream=stream)

    assert loop.run(max_cycles=1) == LoopExit.COMPLETED
    assert stream.getvalue() == ""
    assert driver.call_count("stop_measurement") == 1


def test_stop_sleep_wake_failures_are_not_fatal() -> None:
    """Test housekeeping failures are logged and cycles continue."""
    driver = ScriptedDriver(failing={"stop_measurement", "sleep_device", "wake_device"})
    stream = io.StringIO()
    loop = make_loop(driver, samples=1, stream=stream)

    assert loop.run(max_cycles=3) == LoopExit.COMPLETED
    assert driver.call_count("start_measurement") == 3
    assert driver.call_count("wake_device") == 2
    assert driver.call_count("stop_measurement") == 3
    assert len(stream.getvalue().splitlines()) == 3


def test_stop_event_before_run() -> None:
    """Test a pre-set stop event means no device calls at all."""
    stop_event = threading.Event()
    stop_event.set()
    driver = ScriptedDriver()
    loop = make_loop(driver, stop_event=stop_event)

    assert loop.run() == LoopExit.CANCELLED
    assert driver.calls == []


def test_stop_event_mid_batch() -> None:
    """Test cancellation during sampling stops measurement and emits nothing."""
    stop_event = threading.Event()
    stream = io.StringIO()

    class StoppingDriver(ScriptedDriver):
        def read_sample(self):
            result = super().read_sample()
            if self.call_count("read_sample") == 2:
                stop_event.set()
            return result

    driver = StoppingDriver()
    loop = make_loop(driver, samples=10, stream=stream, stop_event=stop_event)

    assert loop.run() == LoopExit.CANCELLED
    assert driver.call_count("read_sample") == 2
    assert driver.calls[-1] == "stop_measurement"
    assert stream.getvalue() == ""


def test_invalid_batch_size() -> None:
    """Test a loop needs at least one sample per batch."""
    with pytest.raises(ValueError):
        make_loop(ScriptedDriver(), samples=0)


def test_loop_against_simulated_sensor() -> None:
    """Test two full cycles over SHDLC including sleep and wake."""
    fake = FakeSps30Serial(
        samples=[
            Sample(1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 0.5),
            Sample(3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0, 11.0, 1.5),
        ]
    )
    stream = io.StringIO()
    loop = make_loop(Sps30Driver(Transport(fake)), samples=2, stream=stream)

    assert loop.run(max_cycles=2) == LoopExit.COMPLETED

    assert stream.getvalue().splitlines() == [
        "1700000000\t2\t3\t4\t5\t6\t7\t8\t9\t10\t1000",
        "1700000000\t2\t3\t4\t5\t6\t7\t8\t9\t10\t1000",
    ]
    assert fake.mode == "idle"


def test_cadence_wait_follows_failed_reads() -> None:
    """Test the sampling delay is kept between read attempts even when they fail."""
    driver = ScriptedDriver(reads=[ResponseTimeout("no answer")])

    class RecordingEvent(threading.Event):
        """Stop event that logs each wait into the driver's call list."""

        def __init__(self) -> None:
            super().__init__()
            self.timeouts: List[float] = []

        def wait(self, timeout: Optional[float] = None) -> bool:
            driver.calls.append("wait")
            self.timeouts.append(timeout)
            return self.is_set()

    stop_event = RecordingEvent()
    loop = make_loop(driver, samples=3, stop_event=stop_event, interval=0.2)

    assert loop.run(max_cycles=1) == LoopExit.COMPLETED
    assert driver.calls == [
        "start_measurement",
        "read_sample",
        "wait",
        "read_sample",
        "wait",
        "read_sample",
        "wait",
        "stop_measurement",
    ]
    assert all(0 < t <= 0.2 for t in stop_event.timeouts)


def test_non_finite_channel_is_discarded(caplog: pytest.LogCaptureFixture) -> None:
    """Test a NaN or infinite channel value never reaches the average."""
    driver = ScriptedDriver(
        reads=[
            (Sample(mc_1p0=float("nan"), typical_particle_size=1.0), 0),
            (Sample(mc_1p0=2.0, nc_0p5=float("inf"), typical_particle_size=1.0), 0),
            (Sample(mc_1p0=4.0, typical_particle_size=1.0), 0),
        ]
    )
    stream = io.StringIO()
    loop = make_loop(driver, samples=3, stream=stream)

    with caplog.at_level(logging.WARNING):
        assert loop.run(max_cycles=1) == LoopExit.COMPLETED

    fields = stream.getvalue().strip().split("\t")
    assert fields[1] == "4"
    assert fields[5] == "0"
    assert sum("non-finite" in r.getMessage() for r in caplog.records) == 2
