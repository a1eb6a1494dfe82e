"""9x9 board geometry and value helpers shared by every subsystem."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from sudoku_rogue.types import (
    BOX_SIZE,
    GRID_SIZE,
    CellGrid,
    Coord,
    Grid,
    Solution,
)

DIGITS = tuple(range(1, GRID_SIZE + 1))


def in_bounds(row: int, col: int) -> bool:
    return 0 <= row < GRID_SIZE and 0 <= col < GRID_SIZE


def box_index(row: int, col: int) -> int:
    return (row // BOX_SIZE) * BOX_SIZE + col // BOX_SIZE


def row_cells(row: int) -> List[Coord]:
    return [(row, c) for c in range(GRID_SIZE)]


def col_cells(col: int) -> List[Coord]:
    return [(r, col) for r in range(GRID_SIZE)]


def box_cells(box: int) -> List[Coord]:
    top = (box // BOX_SIZE) * BOX_SIZE
    left = (box % BOX_SIZE) * BOX_SIZE
    return [(top + dr, left + dc) for dr in range(BOX_SIZE) for dc in range(BOX_SIZE)]


def boxes_cells(boxes: Iterable[int]) -> List[Coord]:
    seen: List[Coord] = []
    for box in boxes:
        for coord in box_cells(box):
            if coord not in seen:
                seen.append(coord)
    return seen


def all_cells() -> List[Coord]:
    return [(r, c) for r in range(GRID_SIZE) for c in range(GRID_SIZE)]


def connected_cells(row: int, col: int) -> List[Coord]:
    """Peers sharing a row, column or box with (row, col), excluding itself."""
    peers: List[Coord] = []
    for coord in row_cells(row) + col_cells(col) + box_cells(box_index(row, col)):
        if coord != (row, col) and coord not in peers:
            peers.append(coord)
    return peers


def adjacent_cells(row: int, col: int) -> List[Coord]:
    """Orthogonal neighbours."""
    out = []
    for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
        r, c = row + dr, col + dc
        if in_bounds(r, c):
            out.append((r, c))
    return out


def is_valid_placement(grid: Sequence[Sequence[Optional[int]]], row: int, col: int, digit: int) -> bool:
    for r, c in connected_cells(row, col):
        if grid[r][c] == digit:
            return False
    return True


def candidates_for(grid: Sequence[Sequence[Optional[int]]], row: int, col: int) -> List[int]:
    """Digits that could legally go at (row, col) given the other values."""
    used = {grid[r][c] for r, c in connected_cells(row, col)}
    return [d for d in DIGITS if d not in used]


def empty_grid() -> Grid:
    return [[None] * GRID_SIZE for _ in range(GRID_SIZE)]


def copy_grid(grid: Sequence[Sequence[Optional[int]]]) -> Grid:
    return [list(row) for row in grid]


def solution_as_grid(solution: Solution) -> Grid:
    return [list(row) for row in solution]


def freeze(grid: Sequence[Sequence[Optional[int]]]) -> Solution:
    return tuple(tuple(row) for row in grid)  # type: ignore[misc]


def values_of(cells: CellGrid) -> Grid:
    return [[cell.value for cell in row] for row in cells]


def count_filled(grid: Sequence[Sequence[Optional[int]]]) -> int:
    return sum(1 for row in grid for v in row if v is not None)


def is_complete(grid: Sequence[Sequence[Optional[int]]], solution: Solution) -> bool:
    for r in range(GRID_SIZE):
        for c in range(GRID_SIZE):
            if grid[r][c] != solution[r][c]:
                return False
    return True


def is_full(grid: Sequence[Sequence[Optional[int]]]) -> bool:
    return count_filled(grid) == GRID_SIZE * GRID_SIZE


def is_valid_solution(grid: Sequence[Sequence[Optional[int]]]) -> bool:
    full = set(DIGITS)
    for i in range(GRID_SIZE):
        if {grid[i][c] for c in range(GRID_SIZE)} != full:
            return False
        if {grid[r][i] for r in range(GRID_SIZE)} != full:
            return False
        if {grid[r][c] for r, c in box_cells(i)} != full:
            return False
    return True


def digit_count(cells: CellGrid, digit: int) -> int:
    return sum(1 for row in cells for cell in row if cell.value == digit)

