import random

import pytest

from ore_martingale.strategies.grid import BlockPosition, FixedGridSelector, RandomGridSelector


def test_block_position_from_index():
    block = BlockPosition.from_index(13)
    assert (block.row, block.col, block.index) == (2, 3, 13)


@pytest.mark.parametrize("index", [-1, 25])
def test_block_position_out_of_range(index):
    with pytest.raises(ValueError):
        BlockPosition.from_index(index)


def test_random_selection_is_distinct():
    selector = RandomGridSelector(random.Random(1234))
    for _ in range(50):
        blocks = selector.select(5)
        indices = [b.index for b in blocks]
        assert len(indices) == 5
        assert len(set(indices)) == 5
        assert all(0 <= i < 25 for i in indices)


def test_random_selection_clamps_to_grid():
    blocks = RandomGridSelector().select(40)
    assert sorted(b.index for b in blocks) == list(range(25))


def test_fixed_selector():
    selector = FixedGridSelector([3, 9, 21])
    assert [b.index for b in selector.select(2)] == [3, 9]
