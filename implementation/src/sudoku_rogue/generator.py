"""Solved-grid generation and puzzle carving.

The carver removes cells at random without checking that the remaining
puzzle has a single solution; callers always validate against the stored
Solution, never against a solver.
"""
from __future__ import annotations

import logging
import random
from typing import Optional, Tuple

from sudoku_rogue.grid import DIGITS, copy_grid, empty_grid, freeze, is_valid_placement
from sudoku_rogue.types import GRID_SIZE, Grid, Solution

logger = logging.getLogger(__name__)


def _fill(grid: Grid, index: int, rng: random.Random) -> bool:
    if index == GRID_SIZE * GRID_SIZE:
        return True
    row, col = divmod(index, GRID_SIZE)
    digits = list(DIGITS)
    rng.shuffle(digits)
    for digit in digits:
        if is_valid_placement(grid, row, col, digit):
            grid[row][col] = digit
            if _fill(grid, index + 1, rng):
                return True
            grid[row][col] = None
    return False


def generate_solved_grid(rng: Optional[random.Random] = None) -> Solution:
    rng = rng or random.Random()
    grid = empty_grid()
    # An empty board always admits a completion, so this cannot fail.
    _fill(grid, 0, rng)
    return freeze(grid)


def generate_puzzle(difficulty: int, rng: Optional[random.Random] = None) -> Tuple[Grid, Solution]:
    """Return (puzzle, solution) with exactly `difficulty` cells removed."""
    rng = rng or random.Random()
    solution = generate_solved_grid(rng)
    puzzle = copy_grid(solution)
    to_remove = max(0, min(int(difficulty), GRID_SIZE * GRID_SIZE))
    coords = [(r, c) for r in range(GRID_SIZE) for c in range(GRID_SIZE)]
    for row, col in rng.sample(coords, to_remove):
        puzzle[row][col] = None
    logger.debug(f"[generator] carved {to_remove} cells")
    return puzzle, solution
