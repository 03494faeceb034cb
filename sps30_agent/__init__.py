"""
sps30_agent - Measurement-acquisition core for Sensirion SPS30 particulate-matter sensors.

Talks SHDLC over UART, collects fixed-size sample batches, averages the valid
samples and prints one tab-separated record per cycle.
"""

from sps30_agent.acquisition import AcquisitionLoop, LoopExit
from sps30_agent.aggregator import average_batch
from sps30_agent.config import AgentConfig
from sps30_agent.connection import ConnectionManager
from sps30_agent.driver import SensorDriver, Sps30Driver
from sps30_agent.errors import (
    AcquisitionCancelled,
    DeviceCommandError,
    FrameError,
    InvalidConfigValue,
    ResponseTimeout,
    RetryExhausted,
    SerialIOError,
    Sps30Error,
)
from sps30_agent.models import (
    AcquisitionState,
    AveragedReading,
    Sample,
    SessionContext,
    VersionInfo,
)
from sps30_agent.reporter import Reporter
from sps30_agent.retry import RetryPolicy
from sps30_agent.session import SensorSession

__version__ = "0.1.0"

__all__ = [
    "AcquisitionLoop",
    "LoopExit",
    "average_batch",
    "AgentConfig",
    "ConnectionManager",
    "SensorDriver",
    "Sps30Driver",
    "SensorSession",
    "Reporter",
    "RetryPolicy",
    "Sample",
    "AveragedReading",
    "VersionInfo",
    "SessionContext",
    "AcquisitionState",
    "Sps30Error",
    "SerialIOError",
    "ResponseTimeout",
    "FrameError",
    "DeviceCommandError",
    "InvalidConfigValue",
    "AcquisitionCancelled",
    "RetryExhausted",
]
