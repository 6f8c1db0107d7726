"""
External Clock
==============

[HOST] The sale never reads wall-clock time. "Time" is a monotonic counter
supplied by the host (on Ethereum: the block number). Only monotonic
non-decrease is guaranteed, not a uniform rate of advance.

Implementations:
- ManualClock: deterministic counter for tests and simulations
- BlockNumberClock: current block number of a web3 provider
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ExternalClock(ABC):
    """Monotonic counter source."""

    @abstractmethod
    def current(self) -> int:
        """Return the current counter value."""


class ManualClock(ExternalClock):
    """
    Counter driven explicitly by the caller.

    [USAGE]
        clock = ManualClock(100)
        clock.advance()        # 101
        clock.advance_to(150)  # 150
    """

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError(f"Counter must be non-negative, got {start}")
        self._value = start

    def current(self) -> int:
        return self._value

    def advance(self, blocks: int = 1) -> int:
        """Move forward by `blocks` (like mining blocks)."""
        if blocks < 0:
            raise ValueError("Clock cannot move backwards")
        self._value += blocks
        return self._value

    def advance_to(self, value: int) -> int:
        """Move forward to an absolute counter value."""
        if value < self._value:
            raise ValueError(f"Clock cannot move backwards ({self._value} -> {value})")
        self._value = value
        return self._value


class BlockNumberClock(ExternalClock):
    """
    Counter backed by the chain's block number.

    Args:
        w3: Web3 instance (or anything exposing eth.block_number)
    """

    def __init__(self, w3):
        self.w3 = w3
        self._last = 0

    def current(self) -> int:
        block = int(self.w3.eth.block_number)
        # A lagging provider behind a load balancer can report an older block
        if block < self._last:
            logger.warning(f"[CHAIN] Provider reported block {block} < {self._last}; keeping {self._last}")
            return self._last
        self._last = block
        return block
