"""Data models for the SPS30 acquisition agent."""

import math
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Optional, Tuple

# Typical particle size marking a Sample or AveragedReading as unusable.
INVALID_PARTICLE_SIZE = -1.0

# Firmware major version from which the sensor supports sleep/wake.
SLEEP_MIN_FIRMWARE_MAJOR = 2

CHANNEL_NAMES: Tuple[str, ...] = (
    "mc_1p0",
    "mc_2p5",
    "mc_4p0",
    "mc_10p0",
    "nc_0p5",
    "nc_1p0",
    "nc_2p5",
    "nc_4p0",
    "nc_10p0",
    "typical_particle_size",
)


class AcquisitionState(Enum):
    """Acquisition loop states."""

    IDLE = "idle"
    MEASURING = "measuring"
    AVERAGING = "averaging"
    RESTING = "resting"
    ASLEEP = "asleep"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Sample:
    """One raw reading from the sensor.

    Attributes:
        mc_1p0: Mass concentration PM1.0 [ug/m3].
        mc_2p5: Mass concentration PM2.5 [ug/m3].
        mc_4p0: Mass concentration PM4.0 [ug/m3].
        mc_10p0: Mass concentration PM10 [ug/m3].
        nc_0p5: Number concentration PM0.5 [#/cm3].
        nc_1p0: Number concentration PM1.0 [#/cm3].
        nc_2p5: Number concentration PM2.5 [#/cm3].
        nc_4p0: Number concentration PM4.0 [#/cm3].
        nc_10p0: Number concentration PM10 [#/cm3].
        typical_particle_size: Typical particle size [um]. A non-positive value
            marks the whole sample invalid; the other channels are then meaningless.
    """

    mc_1p0: float = 0.0
    mc_2p5: float = 0.0
    mc_4p0: float = 0.0
    mc_10p0: float = 0.0
    nc_0p5: float = 0.0
    nc_1p0: float = 0.0
    nc_2p5: float = 0.0
    nc_4p0: float = 0.0
    nc_10p0: float = 0.0
    typical_particle_size: float = 0.0

    @classmethod
    def invalid(cls) -> "Sample":
        """Sample standing in for a failed read."""
        return cls(typical_particle_size=INVALID_PARTICLE_SIZE)

    @property
    def is_valid(self) -> bool:
        """Positive particle size and every channel a finite number."""
        return self.typical_particle_size > 0 and self.is_finite

    @property
    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in self.values())

    def invalidated(self) -> "Sample":
        """Copy of this sample with the invalid particle size marker."""
        return replace(self, typical_particle_size=INVALID_PARTICLE_SIZE)

    def values(self) -> Tuple[float, ...]:
        """Channel values in CHANNEL_NAMES order."""
        return tuple(getattr(self, f.name) for f in fields(self))


@dataclass(frozen=True)
class AveragedReading(Sample):
    """Per-channel mean of a batch's valid samples.

    Same channels and validity rule as Sample. Callers must check is_valid
    before using any other field.
    """

    @classmethod
    def no_data(cls) -> "AveragedReading":
        """Sentinel for a batch without a single valid sample."""
        return cls(typical_particle_size=INVALID_PARTICLE_SIZE)


@dataclass(frozen=True)
class VersionInfo:
    """Version information read once per session.

    Attributes:
        firmware_major: Firmware major version. Gates sleep/wake usage.
        firmware_minor: Firmware minor version.
        hardware_revision: Hardware revision.
        protocol_major: SHDLC protocol major version.
        protocol_minor: SHDLC protocol minor version.
    """

    firmware_major: int
    firmware_minor: int
    hardware_revision: int
    protocol_major: int
    protocol_minor: int

    def __str__(self) -> str:
        return (
            f"FW: {self.firmware_major}.{self.firmware_minor} "
            f"HW: {self.hardware_revision}, "
            f"SHDLC: {self.protocol_major}.{self.protocol_minor}"
        )


@dataclass(frozen=True)
class SessionContext:
    """Read-only state established by SensorSession and handed to the loop.

    Attributes:
        version: Version information, or None if it could not be read.
        serial: Sensor serial number, or None if it could not be read.
    """

    version: Optional[VersionInfo] = None
    serial: Optional[str] = None

    @property
    def firmware_major(self) -> int:
        """Firmware major version, 0 when the version is unknown."""
        return self.version.firmware_major if self.version else 0

    @property
    def supports_sleep(self) -> bool:
        return self.firmware_major >= SLEEP_MIN_FIRMWARE_MAJOR
