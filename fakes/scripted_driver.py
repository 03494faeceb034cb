"""In-memory SensorDriver whose answers are scripted by the test."""

from collections import deque
from typing import Deque, Iterable, List, Optional, Set, Tuple, Union

from sps30_agent.errors import DeviceCommandError, ResponseTimeout, Sps30Error
from sps30_agent.models import Sample, VersionInfo

# A scripted read: a sample with its status flag, or an error to raise
ScriptedRead = Union[Tuple[Sample, int], Sps30Error]


class ScriptedDriver:
    """SensorDriver test double recording every call.

    Reads are served from `reads` in order and repeat cyclically, so one
    script covers any number of cycles.
    """

    def __init__(
        self,
        version: Optional[VersionInfo] = VersionInfo(2, 2, 7, 2, 0),
        serial: Optional[str] = "SCRIPTED0001",
        reads: Optional[Iterable[ScriptedRead]] = None,
        probe_failures: int = 0,
        failing: Optional[Set[str]] = None,
    ) -> None:
        """Initialize driver.

        Args:
            version: Returned by read_version(); None makes it fail
            serial: Returned by read_serial(); None makes it fail
            reads: Script for read_sample()
            probe_failures: Number of initial probe() calls that fail
            failing: Method names that always raise (e.g. {"sleep_device"})
        """
        self.version = version
        self.serial = serial
        self._reads: List[ScriptedRead] = list(reads) if reads is not None else [
            (Sample(1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 0.5), 0)
        ]
        self._read_index = 0
        self._probe_failures: Deque[int] = deque(range(probe_failures))
        self.failing: Set[str] = set(failing or ())
        self.calls: List[str] = []
        self.auto_clean_days: Optional[int] = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise DeviceCommandError(0x43, 0x00, f"{name} scripted to fail")

    def call_count(self, name: str) -> int:
        return self.calls.count(name)

    def probe(self) -> None:
        self._record("probe")
        if self._probe_failures:
            self._probe_failures.popleft()
            raise ResponseTimeout("No response (scripted)")

    def read_version(self) -> VersionInfo:
        self._record("read_version")
        if self.version is None:
            raise ResponseTimeout("No version (scripted)")
        return self.version

    def read_serial(self) -> str:
        self._record("read_serial")
        if self.serial is None:
            raise ResponseTimeout("No serial (scripted)")
        return self.serial

    def set_auto_clean_days(self, days: int) -> None:
        self._record("set_auto_clean_days")
        self.auto_clean_days = days

    def start_measurement(self) -> None:
        self._record("start_measurement")

    def stop_measurement(self) -> None:
        self._record("stop_measurement")

    def read_sample(self) -> Tuple[Sample, int]:
        self._record("read_sample")
        scripted = self._reads[self._read_index % len(self._reads)]
        self._read_index += 1
        if isinstance(scripted, Sps30Error):
            raise scripted
        return scripted

    def sleep_device(self) -> None:
        self._record("sleep_device")

    def wake_device(self) -> None:
        self._record("wake_device")
