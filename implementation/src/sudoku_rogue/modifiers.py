"""Floor modifier pipeline.

Build-time modifiers (fog, hints, suppression, ambiguity) shape the starting
cell grid.  The rest are consulted by the engine turn by turn; their helpers
live here so the rules for each modifier sit in one place.
"""
from __future__ import annotations

import logging
import random
from typing import List, Optional, Sequence, Tuple

from sudoku_rogue import ambiguity
from sudoku_rogue.grid import all_cells, box_index, boxes_cells, box_cells, candidates_for
from sudoku_rogue.types import (
    GRID_SIZE,
    AmbiguityZone,
    Cell,
    CellGrid,
    Coord,
    LevelModifier,
    ModifierType,
    MoveRecord,
    Solution,
)

logger = logging.getLogger(__name__)

FOG_KEEP_CHANCE = 0.7

PuzzleGrid = Sequence[Sequence[Optional[int]]]


def find_modifier(modifiers: Sequence[LevelModifier], kind: ModifierType) -> Optional[LevelModifier]:
    for modifier in modifiers:
        if modifier.type == kind:
            return modifier
    return None


def init_cells(puzzle: PuzzleGrid) -> CellGrid:
    return [
        [Cell(value=puzzle[r][c], fixed=puzzle[r][c] is not None) for c in range(GRID_SIZE)]
        for r in range(GRID_SIZE)
    ]


def apply_fog(cells: CellGrid, puzzle: PuzzleGrid, modifier: LevelModifier, rng: random.Random) -> None:
    for r, c in boxes_cells(modifier.regions):
        cell = cells[r][c]
        if cell.fixed:
            continue
        cell.fogged = True
        cell.candidates = [d for d in candidates_for(puzzle, r, c) if rng.random() < FOG_KEEP_CHANCE]


def apply_probabilistic_hints(cells: CellGrid, puzzle: PuzzleGrid, modifier: LevelModifier,
                              rng: random.Random) -> None:
    for r, c in boxes_cells(modifier.regions):
        cell = cells[r][c]
        if cell.fixed or cell.value is not None:
            continue
        raw = candidates_for(puzzle, r, c)
        kept = [d for d in raw if rng.random() < modifier.intensity]
        cell.candidates = kept or raw


def apply_candidate_suppression(cells: CellGrid, puzzle: PuzzleGrid, modifier: LevelModifier,
                                rng: random.Random) -> None:
    for r, c in all_cells():
        cell = cells[r][c]
        if cell.fixed or cell.value is not None:
            continue
        raw = candidates_for(puzzle, r, c)
        kept = [d for d in raw if rng.random() < modifier.intensity]
        cell.candidates = kept or raw[:1]


def build_floor_grid(
    puzzle: PuzzleGrid,
    solution: Solution,
    modifiers: Sequence[LevelModifier],
    rng: random.Random,
) -> Tuple[CellGrid, List[AmbiguityZone]]:
    """Initialise cells from the puzzle and run the build-time modifiers in order."""
    cells = init_cells(puzzle)
    zones: List[AmbiguityZone] = []
    for modifier in modifiers:
        if modifier.type == ModifierType.FOG:
            apply_fog(cells, puzzle, modifier, rng)
        elif modifier.type == ModifierType.PROBABILISTIC_HINTS:
            apply_probabilistic_hints(cells, puzzle, modifier, rng)
        elif modifier.type == ModifierType.CANDIDATE_SUPPRESSION:
            apply_candidate_suppression(cells, puzzle, modifier, rng)
        elif modifier.type == ModifierType.AMBIGUITY_INJECTION:
            new_zones = ambiguity.generate_zones(puzzle, solution, modifier.tier, modifier.pockets, rng)
            ambiguity.inject_zones(cells, puzzle, new_zones)
            zones.extend(new_zones)
    logger.debug(f"[modifiers] built floor grid with {len(modifiers)} modifiers, {len(zones)} zones")
    return cells, zones


# -- turn-time helpers -------------------------------------------------------

def validation_depth(modifiers: Sequence[LevelModifier]) -> int:
    modifier = find_modifier(modifiers, ModifierType.DELAYED_VALIDATION)
    return int(modifier.intensity) if modifier else 0


def lockout_turns(modifiers: Sequence[LevelModifier]) -> int:
    modifier = find_modifier(modifiers, ModifierType.CELL_LOCKOUT)
    return int(modifier.intensity) if modifier else 0


def in_modifier_regions(modifiers: Sequence[LevelModifier], kind: ModifierType, row: int, col: int) -> bool:
    box = box_index(row, col)
    return any(m.type == kind and box in m.regions for m in modifiers)


def is_validation_suppressed(modifiers: Sequence[LevelModifier], row: int, col: int) -> bool:
    return in_modifier_regions(modifiers, ModifierType.CONSTRAINT_SUPPRESSION, row, col)


def is_signal_inverted(modifiers: Sequence[LevelModifier], row: int, col: int) -> bool:
    return in_modifier_regions(modifiers, ModifierType.INVERTED_SIGNALS, row, col)


def tick_locks(cells: CellGrid) -> None:
    for row in cells:
        for cell in row:
            if cell.lock_turns > 0:
                cell.lock_turns -= 1


def recent_cells(history: Sequence[MoveRecord], turn: int, count: int) -> List[Coord]:
    out: List[Coord] = []
    for move in history:
        if turn - move.turn < count and (move.row, move.col) not in out:
            out.append((move.row, move.col))
    return out


def apply_recent_hide(cells: CellGrid, previous: Sequence[Coord], window: Sequence[Coord]) -> None:
    """Hide the cells in the recent-move window and reveal the ones that left it."""
    for r, c in previous:
        if (r, c) not in window:
            cells[r][c].hidden = False
    for r, c in window:
        if not cells[r][c].fixed:
            cells[r][c].hidden = True


def hide_box(cells: CellGrid, box: int) -> List[Coord]:
    """Hide the visible open cells of `box`; returns the cells this call hid."""
    hidden: List[Coord] = []
    for r, c in box_cells(box):
        cell = cells[r][c]
        if not cell.fixed and not cell.hidden:
            cell.hidden = True
            hidden.append((r, c))
    return hidden


def unhide_cells(cells: CellGrid, coords: Sequence[Coord]) -> None:
    for r, c in coords:
        cells[r][c].hidden = False


def shuffle_candidates(cells: CellGrid, boxes: Sequence[int], rng: random.Random) -> int:
    shuffled = 0
    for r, c in boxes_cells(boxes):
        cell = cells[r][c]
        if cell.fixed or len(cell.candidates) < 2:
            continue
        rng.shuffle(cell.candidates)
        shuffled += 1
    return shuffled
