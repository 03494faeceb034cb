"""Runtime configuration for the acquisition agent."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class AgentConfig:
    """Tunables of the agent.

    Attributes:
        port: Serial port device name.
        baud: Serial baud rate.
        auto_clean_days: Fan auto-cleaning interval sent at startup (0 disables).
        samples_per_batch: Samples collected per cycle (N).
        sample_interval_s: Delay from the start of one read to the start of the next.
        rest_duration_s: Pause between cycles, with the sensor stopped (and asleep if supported).
        retry_delay_s: Fixed delay between link-open and probe attempts.
        debug: Emit per-sample traces and frame dumps on the diagnostic channel.
    """

    port: str = "/dev/ttyUSB0"
    baud: int = 115200
    auto_clean_days: int = 4
    samples_per_batch: int = 60
    sample_interval_s: float = 1.0
    rest_duration_s: float = 60.0
    retry_delay_s: float = 1.0
    debug: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.port:
            raise ValueError("port must not be empty")
        if self.baud <= 0:
            raise ValueError(f"baud must be positive, got {self.baud}")
        if not (0 <= self.auto_clean_days <= 49710):
            # uint32 seconds on the device
            raise ValueError(f"auto_clean_days must be 0-49710, got {self.auto_clean_days}")
        if self.samples_per_batch < 1:
            raise ValueError(f"samples_per_batch must be >= 1, got {self.samples_per_batch}")
        for name in ("sample_interval_s", "rest_duration_s", "retry_delay_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """Build a config from SPS30_* environment variables, defaults elsewhere.

        Raises:
            ValueError: If a variable cannot be parsed or is out of range
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            port=env.get("SPS30_PORT", defaults.port),
            baud=int(env.get("SPS30_BAUD", defaults.baud)),
            auto_clean_days=int(env.get("SPS30_AUTO_CLEAN_DAYS", defaults.auto_clean_days)),
            samples_per_batch=int(env.get("SPS30_SAMPLES", defaults.samples_per_batch)),
            sample_interval_s=float(env.get("SPS30_SAMPLE_INTERVAL", defaults.sample_interval_s)),
            rest_duration_s=float(env.get("SPS30_REST", defaults.rest_duration_s)),
            retry_delay_s=float(env.get("SPS30_RETRY_DELAY", defaults.retry_delay_s)),
            debug=parse_flag(env.get("SPS30_DEBUG", "")),
        )


def parse_flag(value: str) -> bool:
    """Interpret an on/off style environment value.

    Raises:
        ValueError: If value is not a recognised on/off spelling
    """
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Expected an on/off value, got {value!r}")
