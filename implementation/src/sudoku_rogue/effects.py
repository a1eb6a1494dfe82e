"""Upgrade effect registry.

Every effect is a handler from an `EffectContext` (a read-only view of the
board and run) to an `EffectDelta`.  Handlers never touch the context in
place: board changes come back as a fresh cell grid inside the delta, and
the engine applies the delta to the next state.

Auto-placement goes through `guarded_placements`, which only ever writes
solution values into empty cells and refuses any placement that would fill
the board with something other than the solution.
"""
from __future__ import annotations

import copy
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sudoku_rogue import corruption
from sudoku_rogue.grid import (
    DIGITS,
    adjacent_cells,
    all_cells,
    box_cells,
    box_index,
    candidates_for,
    col_cells,
    digit_count,
    is_complete,
    is_full,
    row_cells,
    values_of,
)
from sudoku_rogue.state import EffectMemory, GameState
from sudoku_rogue.types import CellGrid, Coord, ForbiddenSlot, Solution, Upgrade

logger = logging.getLogger(__name__)


class EffectKey(str, Enum):
    PURIFY = "purify"
    CLEAR_FOG = "clear_fog"
    REMOVE_PHANTOMS = "remove_phantoms"
    REVEAL_HIDDEN = "reveal_hidden"
    BREAK_LOCKS = "break_locks"
    GRANT_CURRENCY = "grant_currency"
    LINE_BONUS = "line_bonus"
    DIGIT_COUNT_BONUS = "digit_count_bonus"
    COMPLETION_JACKPOT = "completion_jackpot"
    MOMENTUM = "momentum"
    REVEAL_CANDIDATE = "reveal_candidate"
    FOCUS_HIDDEN_SINGLE = "focus_hidden_single"
    SOLVE_HIDDEN_SINGLE = "solve_hidden_single"
    CHAIN_SOLVE = "chain_solve"
    AUTO_PLACE = "auto_place"
    FORBID_SLOTS = "forbid_slots"
    RESOLVE_AMBIGUITY = "resolve_ambiguity"
    SHIELD = "shield"
    PURIFICATION = "purification"
    OMNISCIENCE = "omniscience"
    REVEAL_CELLS = "reveal_cells"
    SOLVE_TILE = "solve_tile"
    HEAL_MISTAKE = "heal_mistake"


EFFECT_KEYS = {k.value for k in EffectKey}

# Effects that act on the selected cell and need one to do anything.
TARGETED_EFFECTS = {EffectKey.SOLVE_TILE}


@dataclass
class EffectContext:
    cells: CellGrid
    solution: Solution
    rng: random.Random
    row: Optional[int] = None
    col: Optional[int] = None
    digit: Optional[int] = None
    order_fragments: int = 0
    entropy_dust: int = 0
    mistakes: int = 0
    upgrades: Sequence[Upgrade] = ()
    params: Dict[str, Any] = field(default_factory=dict)
    memory: EffectMemory = field(default_factory=EffectMemory)

    @property
    def target(self) -> Optional[Coord]:
        if self.row is None or self.col is None:
            return None
        return (self.row, self.col)

    def param(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)


@dataclass
class EffectDelta:
    cells: Optional[CellGrid] = None
    order_fragments: int = 0
    entropy_dust: int = 0
    mistakes: int = 0
    max_mistakes: int = 0
    shield_charges: int = 0
    forbidden_slots: List[ForbiddenSlot] = field(default_factory=list)
    memory: Optional[EffectMemory] = None
    fallback: bool = False
    message: str = ""

    @property
    def empty(self) -> bool:
        return (
            self.cells is None
            and not self.order_fragments
            and not self.entropy_dust
            and not self.mistakes
            and not self.max_mistakes
            and not self.shield_charges
            and not self.forbidden_slots
            and self.memory is None
        )


EffectHandler = Callable[[EffectContext], EffectDelta]

_REGISTRY: Dict[EffectKey, EffectHandler] = {}


def register(key: EffectKey) -> Callable[[EffectHandler], EffectHandler]:
    def wrap(fn: EffectHandler) -> EffectHandler:
        _REGISTRY[key] = fn
        return fn
    return wrap


def handler_for(name: str) -> Optional[EffectHandler]:
    try:
        key = EffectKey(name)
    except ValueError:
        return None
    return _REGISTRY.get(key)


def dispatch(name: str, ctx: EffectContext) -> EffectDelta:
    """Run the handler for `name`; unknown keys are logged and do nothing."""
    handler = handler_for(name)
    if handler is None:
        logger.warning(f"[effects] unknown effect key '{name}', ignoring")
        return EffectDelta(message=f"unknown effect '{name}'")
    return handler(ctx)


# -- board helpers -------------------------------------------------------------

def _copy(cells: CellGrid) -> CellGrid:
    return copy.deepcopy(cells)


def scope_cells(scope: str, row: Optional[int], col: Optional[int]) -> Optional[List[Coord]]:
    """Cells covered by `scope` around the target; None when a target is needed but absent."""
    if scope == "global":
        return all_cells()
    if row is None or col is None:
        return None
    if scope == "row":
        return row_cells(row)
    if scope == "col":
        return col_cells(col)
    if scope == "box":
        return box_cells(box_index(row, col))
    if scope == "rowcol":
        return row_cells(row) + [rc for rc in col_cells(col) if rc != (row, col)]
    if scope == "cross":
        return [(row, col)] + adjacent_cells(row, col)
    if scope == "adjacent":
        return adjacent_cells(row, col)
    return [(row, col)]


def hidden_singles(cells: CellGrid, solution: Solution, digit: Optional[int] = None) -> List[Coord]:
    """Empty cells that are the only legal spot in their box for their solution digit."""
    values = values_of(cells)
    found: List[Coord] = []
    digits = [digit] if digit is not None else list(DIGITS)
    for box in range(9):
        open_cells = [(r, c) for r, c in box_cells(box) if values[r][c] is None and not cells[r][c].fixed]
        for d in digits:
            spots = [(r, c) for r, c in open_cells if d in candidates_for(values, r, c)]
            if len(spots) == 1 and solution[spots[0][0]][spots[0][1]] == d:
                found.append(spots[0])
    return found


def guarded_placements(cells: CellGrid, solution: Solution, coords: Sequence[Coord]) -> Tuple[List[Coord], bool]:
    """Filter `coords` down to placements that cannot break the board.

    Only empty, non-fixed cells are kept (they will receive their solution
    value).  If committing them would leave a full board that differs from
    the solution, nothing is placed and the second value is True.
    """
    safe = [(r, c) for r, c in coords if cells[r][c].value is None and not cells[r][c].fixed]
    values = values_of(cells)
    for r, c in safe:
        values[r][c] = solution[r][c]
    if safe and is_full(values) and not is_complete(values, solution):
        return [], True
    return safe, False


def _hint(cells: CellGrid, solution: Solution, coords: Sequence[Coord]) -> int:
    hinted = 0
    for r, c in coords:
        cell = cells[r][c]
        if cell.fixed or cell.value is not None:
            continue
        cell.candidates = [solution[r][c]]
        hinted += 1
    return hinted


def _auto_place(ctx: EffectContext, coords: Sequence[Coord], label: str) -> EffectDelta:
    if not coords:
        return EffectDelta(message=f"{label}: nothing to place")
    cells = _copy(ctx.cells)
    safe, abandoned = guarded_placements(cells, ctx.solution, coords)
    if abandoned:
        hinted = _hint(cells, ctx.solution, coords)
        logger.info(f"[effects] {label}: placement would break the board, hinted {hinted} cells instead")
        return EffectDelta(cells=cells, fallback=True, message=f"{label}: hinted {hinted} cells")
    if not safe:
        return EffectDelta(message=f"{label}: nothing to place")
    for r, c in safe:
        cells[r][c].make_fixed(ctx.solution[r][c])
    return EffectDelta(cells=cells, message=f"{label}: placed {len(safe)} cells")


def _cells_for_digit(ctx: EffectContext, digit: Optional[int]) -> List[Coord]:
    return [
        (r, c) for r, c in all_cells()
        if ctx.cells[r][c].value is None and not ctx.cells[r][c].fixed
        and (digit is None or ctx.solution[r][c] == digit)
    ]


def _scoped(ctx: EffectContext, default: str) -> Optional[List[Coord]]:
    return scope_cells(ctx.param("scope", default), ctx.row, ctx.col)


# -- board handlers ------------------------------------------------------------

@register(EffectKey.PURIFY)
def _purify(ctx: EffectContext) -> EffectDelta:
    coords = _scoped(ctx, "box")
    if coords is None:
        return EffectDelta(message="purify: no target")
    cells = _copy(ctx.cells)
    amount = ctx.param("amount")
    if amount is not None:
        removed = corruption.reduce_corruption(cells, coords, int(amount))
        if not removed:
            return EffectDelta(message="purify: nothing to remove")
        return EffectDelta(cells=cells, message=f"purify: removed {removed} corruption")
    cleansed = corruption.cleanse_cells(cells, coords, ctx.param("max_cells"))
    if not cleansed:
        return EffectDelta(message="purify: nothing to cleanse")
    return EffectDelta(cells=cells, message=f"purify: cleansed {len(cleansed)} cells")


@register(EffectKey.CLEAR_FOG)
def _clear_fog(ctx: EffectContext) -> EffectDelta:
    coords = _scoped(ctx, "box")
    if coords is None:
        return EffectDelta(message="clear_fog: no target")
    cells = _copy(ctx.cells)
    cleared = 0
    for r, c in coords:
        if cells[r][c].fogged:
            cells[r][c].fogged = False
            cleared += 1
    if not cleared:
        return EffectDelta(message="clear_fog: no fog")
    return EffectDelta(cells=cells, message=f"clear_fog: cleared {cleared} cells")


@register(EffectKey.REMOVE_PHANTOMS)
def _remove_phantoms(ctx: EffectContext) -> EffectDelta:
    coords = _scoped(ctx, "box")
    if coords is None:
        return EffectDelta(message="remove_phantoms: no target")
    cells = _copy(ctx.cells)
    values = values_of(cells)
    removed = 0
    for r, c in coords:
        cell = cells[r][c]
        if cell.value is not None:
            continue
        legal = candidates_for(values, r, c)
        kept = [d for d in cell.candidates if d in legal]
        removed += len(cell.candidates) - len(kept)
        cell.candidates = kept
    if not removed:
        return EffectDelta(message="remove_phantoms: none found")
    return EffectDelta(cells=cells, message=f"remove_phantoms: removed {removed}")


@register(EffectKey.REVEAL_HIDDEN)
def _reveal_hidden(ctx: EffectContext) -> EffectDelta:
    coords = _scoped(ctx, "rowcol")
    if coords is None:
        return EffectDelta(message="reveal_hidden: no target")
    hidden = [(r, c) for r, c in coords if ctx.cells[r][c].hidden]
    if not hidden:
        return EffectDelta(message="reveal_hidden: nothing hidden")
    cells = _copy(ctx.cells)
    for r, c in hidden:
        cells[r][c].hidden = False
    return EffectDelta(cells=cells, message=f"reveal_hidden: {len(hidden)} cells")


@register(EffectKey.BREAK_LOCKS)
def _break_locks(ctx: EffectContext) -> EffectDelta:
    coords = _scoped(ctx, "box")
    if coords is None:
        return EffectDelta(message="break_locks: no target")
    locked = [(r, c) for r, c in coords if ctx.cells[r][c].lock_turns > 0]
    if not locked:
        return EffectDelta(message="break_locks: nothing locked")
    cells = _copy(ctx.cells)
    for r, c in locked:
        cells[r][c].lock_turns = 0
    return EffectDelta(cells=cells, message=f"break_locks: {len(locked)} cells")


@register(EffectKey.REVEAL_CANDIDATE)
def _reveal_candidate(ctx: EffectContext) -> EffectDelta:
    pool = _cells_for_digit(ctx, ctx.param("digit", ctx.digit))
    if not pool:
        return EffectDelta(message="reveal_candidate: nothing to reveal")
    picks = ctx.rng.sample(pool, min(int(ctx.param("count", 1)), len(pool)))
    cells = _copy(ctx.cells)
    hinted = _hint(cells, ctx.solution, picks)
    if not hinted:
        return EffectDelta(message="reveal_candidate: nothing to reveal")
    return EffectDelta(cells=cells, message=f"reveal_candidate: hinted {hinted} cells")


@register(EffectKey.FOCUS_HIDDEN_SINGLE)
def _focus_hidden_single(ctx: EffectContext) -> EffectDelta:
    singles = hidden_singles(ctx.cells, ctx.solution, ctx.param("digit", ctx.digit))
    if not singles:
        return EffectDelta(message="focus_hidden_single: none found")
    cells = _copy(ctx.cells)
    _hint(cells, ctx.solution, [ctx.rng.choice(singles)])
    return EffectDelta(cells=cells, message="focus_hidden_single: highlighted one cell")


@register(EffectKey.SOLVE_HIDDEN_SINGLE)
def _solve_hidden_single(ctx: EffectContext) -> EffectDelta:
    singles = hidden_singles(ctx.cells, ctx.solution, ctx.param("digit", ctx.digit))
    if not singles:
        return EffectDelta(message="solve_hidden_single: none found")
    return _auto_place(ctx, [ctx.rng.choice(singles)], "solve_hidden_single")


@register(EffectKey.CHAIN_SOLVE)
def _chain_solve(ctx: EffectContext) -> EffectDelta:
    singles = hidden_singles(ctx.cells, ctx.solution)
    if not singles:
        return EffectDelta(message="chain_solve: none found")
    digit = ctx.param("digit", ctx.digit)
    if digit is None:
        digit = ctx.rng.choice(sorted({ctx.solution[r][c] for r, c in singles}))
    chain = [(r, c) for r, c in singles if ctx.solution[r][c] == digit]
    return _auto_place(ctx, chain, "chain_solve")


@register(EffectKey.AUTO_PLACE)
def _auto_place_handler(ctx: EffectContext) -> EffectDelta:
    pool = _cells_for_digit(ctx, ctx.param("digit", ctx.digit))
    count = ctx.param("count", 1)
    if count != "all":
        pool = ctx.rng.sample(pool, min(int(count), len(pool)))
    return _auto_place(ctx, pool, "auto_place")


@register(EffectKey.FORBID_SLOTS)
def _forbid_slots(ctx: EffectContext) -> EffectDelta:
    values = values_of(ctx.cells)
    options: List[ForbiddenSlot] = []
    for r, c in all_cells():
        if values[r][c] is not None or ctx.cells[r][c].fixed:
            continue
        wrong = [d for d in candidates_for(values, r, c) if d != ctx.solution[r][c]]
        if wrong:
            options.append(ForbiddenSlot(r, c, ctx.rng.choice(wrong)))
    if not options:
        return EffectDelta(message="forbid_slots: nothing to forbid")
    picks = ctx.rng.sample(options, min(int(ctx.param("count", 1)), len(options)))
    cells = _copy(ctx.cells)
    for slot in picks:
        cell = cells[slot.row][slot.col]
        cell.candidates = [d for d in cell.candidates if d != slot.digit]
    return EffectDelta(cells=cells, forbidden_slots=picks, message=f"forbid_slots: {len(picks)} slots")


@register(EffectKey.RESOLVE_AMBIGUITY)
def _resolve_ambiguity(ctx: EffectContext) -> EffectDelta:
    coords = _scoped(ctx, "global")
    if coords is None:
        return EffectDelta(message="resolve_ambiguity: no target")
    pool = [(r, c) for r, c in coords if ctx.cells[r][c].ambiguous]
    if not pool:
        return EffectDelta(message="resolve_ambiguity: nothing ambiguous")
    picks = ctx.rng.sample(pool, min(int(ctx.param("count", 1)), len(pool)))
    cells = _copy(ctx.cells)
    for r, c in picks:
        cell = cells[r][c]
        cell.ambiguous = False
        cell.ambiguous_values = [ctx.solution[r][c]]
        cell.candidates = [ctx.solution[r][c]]
    return EffectDelta(cells=cells, message=f"resolve_ambiguity: {len(picks)} cells")


@register(EffectKey.REVEAL_CELLS)
def _reveal_cells(ctx: EffectContext) -> EffectDelta:
    pool = _cells_for_digit(ctx, None)
    if not pool:
        return EffectDelta(message="reveal_cells: board full")
    picks = ctx.rng.sample(pool, min(int(ctx.param("count", 3)), len(pool)))
    return _auto_place(ctx, picks, "reveal_cells")


@register(EffectKey.SOLVE_TILE)
def _solve_tile(ctx: EffectContext) -> EffectDelta:
    target = ctx.target
    if target is None:
        return EffectDelta(message="solve_tile: no cell selected")
    r, c = target
    cell = ctx.cells[r][c]
    if cell.fixed:
        return EffectDelta(message="solve_tile: cell already fixed")
    cells = _copy(ctx.cells)
    if cell.value is not None and cell.value != ctx.solution[r][c]:
        # A wrong entry is cleared before the guard sees the cell.
        cells[r][c].value = None
    ctx = EffectContext(cells=cells, solution=ctx.solution, rng=ctx.rng)
    return _auto_place(ctx, [target], "solve_tile")


# -- economy / run handlers -------------------------------------------------------

def _currency(ctx: EffectContext, amount: int, message: str) -> EffectDelta:
    if ctx.param("currency", "of") == "ed":
        return EffectDelta(entropy_dust=amount, message=message)
    return EffectDelta(order_fragments=amount, message=message)


@register(EffectKey.GRANT_CURRENCY)
def _grant_currency(ctx: EffectContext) -> EffectDelta:
    amount = int(ctx.param("amount", 1))
    return _currency(ctx, amount, f"grant_currency: +{amount}")


def _unit_complete(ctx: EffectContext, coords: Sequence[Coord]) -> bool:
    return all(ctx.cells[r][c].value == ctx.solution[r][c] for r, c in coords)


@register(EffectKey.LINE_BONUS)
def _line_bonus(ctx: EffectContext) -> EffectDelta:
    if ctx.target is None:
        return EffectDelta(message="line_bonus: no target")
    row, col = ctx.target
    total = 0
    units = ctx.param("units", ["box"])
    amount = int(ctx.param("amount", 3))
    if "box" in units and _unit_complete(ctx, box_cells(box_index(row, col))):
        total += amount
    if "row" in units and _unit_complete(ctx, row_cells(row)):
        total += amount
    if "col" in units and _unit_complete(ctx, col_cells(col)):
        total += amount
    if not total:
        return EffectDelta(message="line_bonus: no unit completed")
    return _currency(ctx, total, f"line_bonus: +{total}")


@register(EffectKey.DIGIT_COUNT_BONUS)
def _digit_count_bonus(ctx: EffectContext) -> EffectDelta:
    if ctx.target is None or ctx.digit is None:
        return EffectDelta(message="digit_count_bonus: no target")
    row, col = ctx.target
    units = {
        "row": row_cells(row),
        "col": col_cells(col),
        "box": box_cells(box_index(row, col)),
    }
    per = int(ctx.param("per", 1))
    total = 0
    for name in ctx.param("units", ["row", "col", "box"]):
        seen = sum(1 for r, c in units.get(name, []) if ctx.cells[r][c].value == ctx.digit)
        total += max(0, seen - 1) * per
    if not total:
        return EffectDelta(message="digit_count_bonus: nothing counted")
    return _currency(ctx, total, f"digit_count_bonus: +{total}")


@register(EffectKey.COMPLETION_JACKPOT)
def _completion_jackpot(ctx: EffectContext) -> EffectDelta:
    if ctx.digit is None or digit_count(ctx.cells, ctx.digit) < 9:
        return EffectDelta(message="completion_jackpot: digit incomplete")
    amount = int(ctx.param("amount", 25))
    return _currency(ctx, amount, f"completion_jackpot: +{amount}")


@register(EffectKey.MOMENTUM)
def _momentum(ctx: EffectContext) -> EffectDelta:
    cap = int(ctx.param("max_stacks", 10))
    if ctx.memory.momentum_stacks >= cap:
        return EffectDelta(message="momentum: at cap")
    memory = copy.copy(ctx.memory)
    memory.momentum_stacks += 1
    return EffectDelta(memory=memory, message=f"momentum: {memory.momentum_stacks} stacks")


@register(EffectKey.SHIELD)
def _shield(ctx: EffectContext) -> EffectDelta:
    if ctx.param("once_per_floor", True) and ctx.memory.shield_granted:
        return EffectDelta(message="shield: already granted this floor")
    memory = copy.copy(ctx.memory)
    memory.shield_granted = True
    return EffectDelta(shield_charges=int(ctx.param("amount", 1)), memory=memory, message="shield: +1 charge")


@register(EffectKey.PURIFICATION)
def _purification(ctx: EffectContext) -> EffectDelta:
    if ctx.memory.purification_used:
        return EffectDelta(message="purification: already used this floor")
    cells = _copy(ctx.cells)
    cleansed = corruption.cleanse_cells(cells)
    memory = copy.copy(ctx.memory)
    memory.purification_used = True
    return EffectDelta(cells=cells, memory=memory, message=f"purification: cleansed {len(cleansed)} cells")


@register(EffectKey.OMNISCIENCE)
def _omniscience(ctx: EffectContext) -> EffectDelta:
    if ctx.memory.omniscience_used:
        return EffectDelta(message="omniscience: already used this floor")
    digit = int(ctx.param("digit", 1))
    delta = _auto_place(ctx, _cells_for_digit(ctx, digit), "omniscience")
    memory = copy.copy(ctx.memory)
    memory.omniscience_used = True
    delta.memory = memory
    return delta


@register(EffectKey.HEAL_MISTAKE)
def _heal_mistake(ctx: EffectContext) -> EffectDelta:
    healed = min(int(ctx.param("amount", 1)), ctx.mistakes)
    if not healed:
        return EffectDelta(message="heal_mistake: no mistakes to heal")
    return EffectDelta(mistakes=-healed, message=f"heal_mistake: -{healed}")


# -- engine side -------------------------------------------------------------------

def context_for(state: GameState, upgrade: Upgrade, rng: random.Random,
                target: Optional[Coord] = None, digit: Optional[int] = None) -> EffectContext:
    row, col = target if target is not None else (None, None)
    return EffectContext(
        cells=state.cells,
        solution=state.solution,
        rng=rng,
        row=row,
        col=col,
        digit=digit if digit is not None else upgrade.digit,
        order_fragments=state.wallet.order_fragments,
        entropy_dust=state.wallet.entropy_dust,
        mistakes=state.mistakes,
        upgrades=tuple(state.upgrades),
        params=dict(upgrade.params),
        memory=state.memory,
    )


def apply_delta(state: GameState, delta: EffectDelta) -> None:
    """Fold a delta into a state the engine owns (never a published one)."""
    if delta.cells is not None:
        state.cells = delta.cells
    if delta.order_fragments > 0:
        state.wallet.add_order_fragments(delta.order_fragments)
    if delta.entropy_dust > 0:
        state.wallet.add_entropy_dust(delta.entropy_dust)
    if delta.mistakes:
        state.mistakes = max(0, state.mistakes + delta.mistakes)
    if delta.max_mistakes:
        state.max_mistakes += delta.max_mistakes
    if delta.shield_charges:
        state.shield_charges += delta.shield_charges
    if delta.forbidden_slots:
        state.forbidden_slots.extend(delta.forbidden_slots)
    if delta.memory is not None:
        state.memory = delta.memory
