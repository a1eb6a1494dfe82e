from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import List, Optional

from sudoku_rogue.store import Wallet
from sudoku_rogue.types import (
    AmbiguityZone,
    AppliedEffect,
    CellGrid,
    Coord,
    ForbiddenSlot,
    LevelModifier,
    MoveRecord,
    Phase,
    Solution,
    Upgrade,
)


@dataclass
class EffectMemory:
    """State that upgrade effects carry between triggers.

    Floor-scoped fields are reset by `for_new_floor`; the rest last the run.
    """
    momentum_stacks: int = 0
    # floor-scoped
    purification_used: bool = False
    omniscience_used: bool = False
    shield_granted: bool = False

    def for_new_floor(self) -> "EffectMemory":
        return EffectMemory(momentum_stacks=self.momentum_stacks)


@dataclass
class GameState:
    floor: int
    cells: CellGrid
    solution: Solution
    max_floors: int = 9
    phase: Phase = Phase.PUZZLE
    selected: Optional[Coord] = None

    mistakes: int = 0
    max_mistakes: int = 3
    run_mistakes: int = 0
    corruption: int = 0
    fired_thresholds: List[int] = field(default_factory=list)
    locked_boxes: List[int] = field(default_factory=list)

    wallet: Wallet = field(default_factory=Wallet)
    upgrades: List[Upgrade] = field(default_factory=list)

    turn: int = 0
    move_history: List[MoveRecord] = field(default_factory=list)
    pending: List[MoveRecord] = field(default_factory=list)

    modifiers: List[LevelModifier] = field(default_factory=list)
    zones: List[AmbiguityZone] = field(default_factory=list)
    forbidden_slots: List[ForbiddenSlot] = field(default_factory=list)
    shield_charges: int = 0
    forced_bifurcation: bool = False
    recent_hidden: List[Coord] = field(default_factory=list)
    timed_hide_box: Optional[int] = None
    timed_hidden: List[Coord] = field(default_factory=list)
    timed_hide_since: Optional[float] = None
    last_shuffle_at: Optional[float] = None
    floor_started_at: float = 0.0

    memory: EffectMemory = field(default_factory=EffectMemory)
    applied_effects: List[AppliedEffect] = field(default_factory=list)

    run_seed: int = 0
    shops_opened: int = 0
    shops_since_rare: int = 0

    complete: bool = False
    game_over: bool = False
    loss_reason: str = ""

    @property
    def terminal(self) -> bool:
        return self.phase in (Phase.VICTORY, Phase.DEFEAT)

    @property
    def of(self) -> int:
        return self.wallet.order_fragments

    @property
    def ed(self) -> int:
        return self.wallet.entropy_dust

    def cell(self, row: int, col: int):
        return self.cells[row][col]

    def owns(self, upgrade_id: str) -> bool:
        return any(u.id == upgrade_id for u in self.upgrades)

    def clone(self) -> "GameState":
        """Deep copy for the next published state; the solution is shared, it is immutable."""
        memo = {id(self.solution): self.solution}
        return copy.deepcopy(self, memo)
