"""Fixed-size ring of reusable protocol frames."""

from __future__ import annotations

import logging

from goim.errors import RingEmptyError, RingFullError
from goim.protocol import Proto

logger = logging.getLogger(__name__)


def _round_up_power_of_two(num: int) -> int:
    if num & (num - 1):
        while num & (num - 1):
            num &= num - 1
        num <<= 1
    return num


class Ring:
    """Single-reader, single-writer ring buffer whose size is a power of two."""

    def __init__(self, num: int) -> None:
        if num < 0:
            raise ValueError("ring size must not be negative")
        size = _round_up_power_of_two(num)
        self._data = [Proto() for _ in range(size)]
        self._num = size
        self._mask = size - 1
        self._rp = 0
        self._wp = 0

    @property
    def capacity(self) -> int:
        """Number of slots in the ring."""
        return self._num

    def __len__(self) -> int:
        return self._wp - self._rp

    def get(self) -> Proto:
        """Return the next frame to read without advancing."""
        if self._rp == self._wp:
            raise RingEmptyError()
        return self._data[self._rp & self._mask]

    def get_adv(self) -> None:
        """Advance the read position."""
        self._rp += 1
        logger.debug("ring rp: %d, idx: %d", self._rp, self._rp & self._mask)

    def set(self) -> Proto:
        """Return the next free slot to write without advancing."""
        if self._wp - self._rp >= self._num:
            raise RingFullError()
        return self._data[self._wp & self._mask]

    def set_adv(self) -> None:
        """Advance the write position."""
        self._wp += 1
        logger.debug("ring wp: %d, idx: %d", self._wp, self._wp & self._mask)

    def reset(self) -> None:
        """Forget all unread frames."""
        self._rp = 0
        self._wp = 0