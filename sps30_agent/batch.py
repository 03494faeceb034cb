"""Fixed-capacity ordered buffer for one acquisition cycle's samples."""

import logging
from typing import Iterator, List

from sps30_agent.models import Sample

logger = logging.getLogger(__name__)


class Batch:
    """Ordered sequence of Samples filled slot by slot during one cycle.

    Capacity is set at runtime. Slots are never overwritten; appending to a
    full batch is an error.
    """

    def __init__(self, capacity: int) -> None:
        """Initialize batch.

        Args:
            capacity: Number of samples per cycle. Must be positive.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")

        self._samples: List[Sample] = []
        self._capacity = capacity

    def append(self, sample: Sample) -> int:
        """Fill the next slot.

        Args:
            sample: Sample for the next index

        Returns:
            Index of the filled slot

        Raises:
            ValueError: If the batch is already complete
        """
        if self.is_complete:
            raise ValueError(f"Batch already holds {self._capacity} samples")

        self._samples.append(sample)
        index = len(self._samples) - 1
        logger.debug(f"Filled slot {index}, batch size: {len(self._samples)}/{self._capacity}")
        return index

    def snapshot(self) -> List[Sample]:
        """Copy of the samples, in slot order."""
        return list(self._samples)

    @property
    def valid_count(self) -> int:
        return sum(1 for s in self._samples if s.is_valid)

    @property
    def is_complete(self) -> bool:
        return len(self._samples) >= self._capacity

    @property
    def capacity(self) -> int:
        """Number of slots."""
        return self._capacity

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)
