"""Reduction of a batch of samples to one averaged reading."""

from typing import Iterable, List

from sps30_agent.models import CHANNEL_NAMES, AveragedReading, Sample


def average_batch(samples: Iterable[Sample]) -> AveragedReading:
    """Average every channel over the valid samples only.

    Invalid samples contribute to neither the sums nor the divisor. Plain
    floating-point division; rounding is left to the reporter.

    Args:
        samples: A Batch or any iterable of Samples, in slot order

    Returns:
        AveragedReading, or AveragedReading.no_data() if no sample is valid
    """
    sums: List[float] = [0.0] * len(CHANNEL_NAMES)
    count = 0
    for sample in samples:
        if not sample.is_valid:
            continue
        for i, value in enumerate(sample.values()):
            sums[i] += value
        count += 1

    if count == 0:
        return AveragedReading.no_data()

    return AveragedReading(*(total / count for total in sums))
