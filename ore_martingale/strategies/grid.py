"""
Square selection on the 5x5 board.

The default policy picks a uniform random subset every round. Anything with a
select(count) method can stand in, e.g. FixedGridSelector for replaying a
known pattern.
"""

import random
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

GRID_SIZE = 5
TOTAL_BLOCKS = GRID_SIZE * GRID_SIZE


@dataclass(frozen=True)
class BlockPosition:
    row: int
    col: int
    index: int

    @classmethod
    def from_index(cls, index: int) -> "BlockPosition":
        if not 0 <= index < TOTAL_BLOCKS:
            raise ValueError(f"Block index out of range: {index}")
        return cls(row=index // GRID_SIZE, col=index % GRID_SIZE, index=index)


class GridSelector(Protocol):
    def select(self, count: int) -> list[BlockPosition]:
        ...


class RandomGridSelector:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select(self, count: int) -> list[BlockPosition]:
        count = max(0, min(count, TOTAL_BLOCKS))
        indices = list(range(TOTAL_BLOCKS))
        self.rng.shuffle(indices)
        return [BlockPosition.from_index(i) for i in indices[:count]]


class FixedGridSelector:
    def __init__(self, indices: Sequence[int]):
        self.blocks = [BlockPosition.from_index(i) for i in indices]

    def select(self, count: int) -> list[BlockPosition]:
        return self.blocks[:count]
