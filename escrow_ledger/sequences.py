"""
sequences.py - Escrow Sequence Allocation

Escrow records are keyed by an integer sequence. Allocation is a pluggable
strategy so the engine never reuses a live sequence:

- RandomSequenceAllocator: uniform draws from [0, space), redrawn on collision
- MonotonicSequenceAllocator: increasing counter that skips live sequences
"""

from __future__ import annotations
import random
from typing import Container, Optional, Protocol, runtime_checkable

from .core import SEQUENCE_SPACE, InternalFault


@runtime_checkable
class SequenceAllocator(Protocol):
    """Chooses the sequence for a new escrow."""

    def allocate(self, taken: Container[int]) -> int:
        """Return a sequence not contained in taken."""
        ...


class RandomSequenceAllocator:
    """
    Draw sequences uniformly at random, retrying when a draw is already live.

    Raises InternalFault after max_attempts consecutive collisions, which in
    practice means the sequence space is nearly full.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        space: int = SEQUENCE_SPACE,
        max_attempts: int = 64,
    ):
        if space <= 0:
            raise ValueError(f"Sequence space must be positive, got {space}")
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.rng = rng or random.Random()
        self.space = space
        self.max_attempts = max_attempts

    def allocate(self, taken: Container[int]) -> int:
        for _ in range(self.max_attempts):
            candidate = self.rng.randrange(self.space)
            if candidate not in taken:
                return candidate
        raise InternalFault(
            f"Could not allocate an escrow sequence after {self.max_attempts} attempts"
        )


class MonotonicSequenceAllocator:
    """Hand out 1, 2, 3, ... skipping any sequence that is still live."""

    def __init__(self, start: int = 1):
        self._next = start

    def allocate(self, taken: Container[int]) -> int:
        while self._next in taken:
            self._next += 1
        sequence = self._next
        self._next += 1
        return sequence
