"""Corruption: per-cell damage (0-5) that spreads from mistakes.

Each cell carries its own level; the board total drives global threshold
events.  Fixed cells never take corruption.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from sudoku_rogue.grid import DIGITS, all_cells, box_cells, candidates_for, connected_cells, values_of
from sudoku_rogue.types import MAX_CELL_CORRUPTION, CellGrid, Coord

logger = logging.getLogger(__name__)

THRESHOLD_BOUNDARIES = (10, 20, 30, 40, 50)
LOSS_BOUNDARY = 50
MAX_INFLATION = 0.5

RESIST_MULTIPLIER = 0.25


class ThresholdEvent(Enum):
    CANDIDATE_WIPE = 10
    BOX_LOCK = 20
    WIPE_AND_FOG = 30
    MULTI_BOX_LOCK = 40
    LOSS = 50


WIPE_EVENTS = (ThresholdEvent.CANDIDATE_WIPE, ThresholdEvent.WIPE_AND_FOG)


@dataclass
class Distortion:
    lock: bool = False
    hide: bool = False
    bifurcation: bool = False


@dataclass
class ThresholdOutcome:
    fired: List[ThresholdEvent] = field(default_factory=list)
    suppressed: List[ThresholdEvent] = field(default_factory=list)
    locked_boxes: List[int] = field(default_factory=list)
    fogged_boxes: List[int] = field(default_factory=list)
    loss: bool = False


def total_corruption(cells: CellGrid) -> int:
    return sum(cell.corruption for row in cells for cell in row)


def corruption_ratio(total: int) -> float:
    """Board total against an 81-cell board, as used for shop pricing."""
    return total / 81.0


def inflation_rate(total: int) -> float:
    return min(corruption_ratio(total), MAX_INFLATION)


def spread_size(mistakes: int, base: int, cap: int) -> int:
    return max(0, min(base + mistakes, cap))


def spread(cells: CellGrid, row: int, col: int, mistakes: int, rng: random.Random,
           base: int = 2, cap: int = 8) -> List[Coord]:
    """Corrupt a random subset of the placed cell's peers by one level each.

    Only non-fixed peers below the per-cell cap are eligible.
    """
    eligible = [
        (r, c) for r, c in connected_cells(row, col)
        if not cells[r][c].fixed and cells[r][c].corruption < MAX_CELL_CORRUPTION
    ]
    count = min(spread_size(mistakes, base, cap), len(eligible))
    chosen = rng.sample(eligible, count)
    for r, c in chosen:
        cells[r][c].corruption += 1
    logger.debug(f"[corruption] spread from ({row},{col}) to {len(chosen)} cells")
    return chosen


def degrade(cells: CellGrid, rng: random.Random, resist: bool = False, shield: bool = False) -> None:
    """Roll the level-gated degradation tiers for every corrupted cell."""
    mult = RESIST_MULTIPLIER if resist else 1.0
    values = values_of(cells)
    for r, c in all_cells():
        cell = cells[r][c]
        level = cell.corruption
        if level == 0 or cell.fixed:
            continue
        if level >= 1 and not shield and rng.random() < 0.3 * level * mult:
            shuffled = candidates_for(values, r, c) if cell.value is None else []
            rng.shuffle(shuffled)
            cell.candidates = shuffled
        if level >= 2 and rng.random() < 0.2 * level * mult:
            phantoms = [d for d in DIGITS if d not in cell.candidates][:rng.randint(1, 3)]
            cell.candidates = cell.candidates + phantoms
        if level >= 3 and rng.random() < 0.15 * mult:
            cell.fogged = True
        if level >= 4 and rng.random() < 0.1 * mult and cell.value is not None:
            cell.hidden = True
        if level >= 5 and rng.random() < 0.05 * mult:
            cell.candidates = []


def distortion_for(corruption: int, rng: random.Random) -> Distortion:
    """Side effects of placing into a corrupted cell."""
    return Distortion(
        lock=corruption >= 3 and rng.random() < 0.25,
        hide=corruption >= 2 and rng.random() < 0.15,
        bifurcation=corruption >= 4 and rng.random() < 0.1,
    )


def crossed_boundaries(previous: int, current: int, fired: Iterable[int] = ()) -> List[int]:
    """Boundaries crossed upward by previous -> current that have not fired yet."""
    done = set(fired)
    return [b for b in THRESHOLD_BOUNDARIES if previous < b <= current and b not in done]


def box_corruption(cells: CellGrid, box: int) -> int:
    return sum(cells[r][c].corruption for r, c in box_cells(box))


def most_corrupted_boxes(cells: CellGrid, count: int, exclude: Sequence[int] = ()) -> List[int]:
    boxes = [b for b in range(9) if b not in exclude]
    boxes.sort(key=lambda b: -box_corruption(cells, b))
    return boxes[:count]


def wipe_candidates(cells: CellGrid) -> None:
    for row in cells:
        for cell in row:
            if not cell.fixed:
                cell.candidates = []


def fog_box(cells: CellGrid, box: int) -> None:
    for r, c in box_cells(box):
        if not cells[r][c].fixed:
            cells[r][c].fogged = True


def apply_thresholds(
    cells: CellGrid,
    boundaries: Sequence[int],
    locked_boxes: List[int],
    rng: random.Random,
    wipe_immune: bool = False,
) -> ThresholdOutcome:
    """Apply each crossed boundary's event in ascending order."""
    outcome = ThresholdOutcome()
    for boundary in sorted(boundaries):
        event = ThresholdEvent(boundary)
        if wipe_immune and event in WIPE_EVENTS:
            outcome.suppressed.append(event)
            logger.info(f"[corruption] threshold {boundary} suppressed by immunity")
            continue
        outcome.fired.append(event)
        logger.info(f"[corruption] threshold {boundary} crossed: {event.name}")
        if event == ThresholdEvent.CANDIDATE_WIPE:
            wipe_candidates(cells)
        elif event == ThresholdEvent.BOX_LOCK:
            for box in most_corrupted_boxes(cells, 1, exclude=locked_boxes):
                locked_boxes.append(box)
                outcome.locked_boxes.append(box)
        elif event == ThresholdEvent.WIPE_AND_FOG:
            wipe_candidates(cells)
            for box in rng.sample(range(9), 3):
                fog_box(cells, box)
                outcome.fogged_boxes.append(box)
        elif event == ThresholdEvent.MULTI_BOX_LOCK:
            for box in most_corrupted_boxes(cells, 3, exclude=locked_boxes):
                locked_boxes.append(box)
                outcome.locked_boxes.append(box)
        elif event == ThresholdEvent.LOSS:
            outcome.loss = True
    return outcome


def cleanse_cells(cells: CellGrid, coords: Optional[Iterable[Coord]] = None,
                  limit: Optional[int] = None) -> List[Coord]:
    """Reset the most corrupted cells (optionally within `coords`) to clean."""
    pool = list(coords) if coords is not None else all_cells()
    targets = [rc for rc in pool if cells[rc[0]][rc[1]].corruption > 0]
    targets.sort(key=lambda rc: -cells[rc[0]][rc[1]].corruption)
    if limit is not None:
        targets = targets[:max(0, limit)]
    for r, c in targets:
        cell = cells[r][c]
        cell.corruption = 0
        cell.fogged = False
        cell.hidden = False
    return targets


def reduce_corruption(cells: CellGrid, coords: Iterable[Coord], amount: int) -> int:
    removed = 0
    for r, c in coords:
        cell = cells[r][c]
        drop = min(cell.corruption, amount)
        cell.corruption -= drop
        removed += drop
    return removed

