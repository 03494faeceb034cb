"""Tests for sensor identification and configuration at startup."""

import logging

import pytest

from fakes.fake_sps30 import FakeSps30Serial
from fakes.scripted_driver import ScriptedDriver
from sps30_agent import protocol
from sps30_agent.driver import Sps30Driver
from sps30_agent.models import SessionContext, VersionInfo
from sps30_agent.retry import RetryPolicy
from sps30_agent.session import SensorSession
from sps30_agent.transport import Transport


def test_startup_sequence_order() -> None:
    """Test probe, version, serial, auto-clean run once and in order."""
    driver = ScriptedDriver()
    session = SensorSession(driver, auto_clean_days=4)

    context = session.start()

    assert driver.calls == ["probe", "read_version", "read_serial", "set_auto_clean_days"]
    assert driver.auto_clean_days == 4
    assert context.version == VersionInfo(2, 2, 7, 2, 0)
    assert context.serial == "SCRIPTED0001"
    assert context.supports_sleep


def test_probe_retried_until_sensor_answers(caplog: pytest.LogCaptureFixture) -> None:
    """Test probing is retried with one diagnostic per failure."""
    driver = ScriptedDriver(probe_failures=3)
    session = SensorSession(driver, policy=RetryPolicy(delay_s=0.0))

    with caplog.at_level(logging.INFO):
        session.start()

    assert driver.call_count("probe") == 4
    messages = [r.getMessage() for r in caplog.records]
    assert sum("SPS30 sensor probing failed" in m for m in messages) == 3
    assert "SPS30 sensor probing successful" in messages


def test_missing_version_disables_sleep(caplog: pytest.LogCaptureFixture) -> None:
    """Test a failed version read is logged and treated as firmware < 2."""
    driver = ScriptedDriver(version=None)

    with caplog.at_level(logging.ERROR):
        context = SensorSession(driver).start()

    assert context.version is None
    assert context.firmware_major == 0
    assert not context.supports_sleep
    assert any("Error reading version" in r.getMessage() for r in caplog.records)
    # Startup continued past the failure
    assert "set_auto_clean_days" in driver.calls


def test_serial_and_auto_clean_are_best_effort() -> None:
    """Test serial and auto-clean failures do not block startup."""
    driver = ScriptedDriver(serial=None, failing={"set_auto_clean_days"})

    context = SensorSession(driver).start()

    assert context.serial is None
    assert context.supports_sleep


def test_old_firmware_context() -> None:
    """Test firmware 1.x sessions do not support sleep."""
    context = SessionContext(version=VersionInfo(1, 0, 5, 1, 0))

    assert context.firmware_major == 1
    assert not context.supports_sleep


def test_session_against_simulated_sensor() -> None:
    """Test a full startup over SHDLC with the fake sensor."""
    fake = FakeSps30Serial(serial_number="SIM0001", firmware=(2, 1))
    session = SensorSession(Sps30Driver(Transport(fake)), auto_clean_days=2)

    context = session.start()

    assert context.serial == "SIM0001"
    assert context.firmware_major == 2
    assert fake.auto_clean_seconds == 2 * protocol.SECONDS_PER_DAY
