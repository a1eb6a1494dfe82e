"""Ambiguity zones: small pockets of empty cells with several legal values.

A wrong placement inside a pocket spreads corruption in a tier-shaped
pattern; a pocket counts as resolved once most of its cells are correct.
"""
from __future__ import annotations

import logging
import math
import random
from typing import Dict, List, Optional, Sequence

from sudoku_rogue.grid import box_cells, box_index, candidates_for, col_cells, row_cells
from sudoku_rogue.types import (
    MAX_CELL_CORRUPTION,
    AmbiguityTier,
    AmbiguityZone,
    CellGrid,
    Coord,
    Solution,
)

logger = logging.getLogger(__name__)

POCKET_SIZE: Dict[AmbiguityTier, int] = {
    AmbiguityTier.NONE: 0,
    AmbiguityTier.A1: 2,
    AmbiguityTier.A2: 3,
    AmbiguityTier.A3: 4,
    AmbiguityTier.A4: 5,
}

RESOLUTION_RATIO = 0.6


def _empty_in(puzzle: Sequence[Sequence[Optional[int]]], coords: List[Coord], limit: int) -> List[Coord]:
    out: List[Coord] = []
    for r, c in coords:
        if len(out) >= limit:
            break
        if puzzle[r][c] is None:
            out.append((r, c))
    return out


def create_zone(
    puzzle: Sequence[Sequence[Optional[int]]],
    solution: Solution,
    tier: AmbiguityTier,
    coords: List[Coord],
) -> Optional[AmbiguityZone]:
    size = POCKET_SIZE[tier]
    cells = _empty_in(puzzle, coords, size)
    if len(cells) < 2:
        return None
    alternatives: Dict[Coord, List[int]] = {}
    for r, c in cells:
        candidates = candidates_for(puzzle, r, c)
        if len(candidates) > 1:
            alternatives[(r, c)] = candidates[:size]
        else:
            alternatives[(r, c)] = [solution[r][c]]
    return AmbiguityZone(cells=cells, tier=tier, alternatives=alternatives)


def generate_zones(
    puzzle: Sequence[Sequence[Optional[int]]],
    solution: Solution,
    tier: AmbiguityTier,
    pockets: int,
    rng: random.Random,
) -> List[AmbiguityZone]:
    """Pick a fresh row or box per pocket and carve a zone out of its empty cells."""
    zones: List[AmbiguityZone] = []
    used_rows: set = set()
    used_boxes: set = set()
    for _ in range(pockets):
        if rng.random() > 0.5:
            available = [r for r in range(9) if r not in used_rows]
            if not available:
                continue
            row = rng.choice(available)
            zone = create_zone(puzzle, solution, tier, row_cells(row))
            if zone is not None:
                zones.append(zone)
                used_rows.add(row)
        else:
            available = [b for b in range(9) if b not in used_boxes]
            if not available:
                continue
            box = rng.choice(available)
            zone = create_zone(puzzle, solution, tier, box_cells(box))
            if zone is not None:
                zones.append(zone)
                used_boxes.add(box)
    return zones


def inject_zones(cells: CellGrid, puzzle: Sequence[Sequence[Optional[int]]], zones: List[AmbiguityZone]) -> None:
    for zone in zones:
        for r, c in zone.cells:
            cell = cells[r][c]
            if cell.fixed or cell.value is not None:
                continue
            candidates = candidates_for(puzzle, r, c)
            cell.ambiguous = len(candidates) > 1
            cell.ambiguous_values = candidates
            cell.ambiguity_tier = zone.tier


def spread_pattern(row: int, col: int, tier: AmbiguityTier) -> List[Coord]:
    if tier == AmbiguityTier.A2:
        return row_cells(row)
    if tier == AmbiguityTier.A3:
        return box_cells(box_index(row, col))
    if tier == AmbiguityTier.A4:
        # row ∪ column, the crossing cell counted once
        coords = row_cells(row)
        coords.extend(rc for rc in col_cells(col) if rc != (row, col))
        return coords
    return [(row, col)]


def spread_ambiguity_corruption(cells: CellGrid, row: int, col: int, tier: AmbiguityTier) -> int:
    """Add one corruption to each non-fixed cell in the tier pattern; return cells touched."""
    touched = 0
    for r, c in spread_pattern(row, col, tier):
        cell = cells[r][c]
        if cell.fixed or cell.corruption >= MAX_CELL_CORRUPTION:
            continue
        cell.corruption += 1
        touched += 1
    return touched


def check_resolution(zones: List[AmbiguityZone], cells: CellGrid, solution: Solution) -> List[AmbiguityZone]:
    """Mark zones resolved once ceil(60%) of their cells hold the solution value."""
    for zone in zones:
        if zone.resolved:
            continue
        correct = sum(1 for r, c in zone.cells if cells[r][c].value == solution[r][c])
        if correct >= math.ceil(len(zone.cells) * RESOLUTION_RATIO):
            zone.resolved = True
            logger.debug(f"[ambiguity] zone {zone.cells[0]} ({zone.tier.value}) resolved")
    return zones
