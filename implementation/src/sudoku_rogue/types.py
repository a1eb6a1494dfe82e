from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


GRID_SIZE = 9
BOX_SIZE = 3
MAX_CELL_CORRUPTION = 5

# Row-major value grid; None marks an empty cell.
Grid = List[List[Optional[int]]]
# Solutions never change after generation, so they are stored immutably.
Solution = Tuple[Tuple[int, ...], ...]
Coord = Tuple[int, int]


class Phase(str, Enum):
    PUZZLE = "puzzle"
    SHOP = "shop"
    VICTORY = "victory"
    DEFEAT = "defeat"


class AmbiguityTier(str, Enum):
    NONE = "none"
    A1 = "A1"
    A2 = "A2"
    A3 = "A3"
    A4 = "A4"


class ModifierType(str, Enum):
    FOG = "fog"
    PROBABILISTIC_HINTS = "probabilistic_hints"
    CANDIDATE_SUPPRESSION = "candidate_suppression"
    AMBIGUITY_INJECTION = "ambiguity_injection"
    DELAYED_VALIDATION = "delayed_validation"
    CELL_LOCKOUT = "cell_lockout"
    RECENT_HIDE = "recent_hide"
    TIMED_HIDE = "timed_hide"
    CANDIDATE_SHUFFLE = "candidate_shuffle"
    CONSTRAINT_SUPPRESSION = "constraint_suppression"
    INVERTED_SIGNALS = "inverted_signals"
    FORCED_BIFURCATION = "forced_bifurcation"


class Rarity(IntEnum):
    COMMON = 0
    UNCOMMON = 1
    RARE = 2
    EPIC = 3
    ROGUE = 4

    @classmethod
    def parse(cls, name: str) -> "Rarity":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown rarity {name!r}") from None


class OfferType(str, Enum):
    NUMBER_UPGRADE = "number_upgrade"
    CONSUMABLE = "consumable"
    RELIC_RUN = "relic_run"
    RELIC_PERMANENT = "relic_permanent"
    RULE_MUTATOR = "rule_mutator"


class UpgradeKind(str, Enum):
    NUMBER = "number"
    PASSIVE = "passive"
    CONSUMABLE = "consumable"


class RerollMethod(str, Enum):
    OF = "of"
    ED = "ed"
    PREMIUM = "premium"


@dataclass
class Cell:
    value: Optional[int] = None
    fixed: bool = False
    correct: bool = True
    corruption: int = 0
    fogged: bool = False
    candidates: List[int] = field(default_factory=list)
    hidden: bool = False
    lock_turns: int = 0
    ambiguity_tier: AmbiguityTier = AmbiguityTier.NONE
    ambiguous_values: List[int] = field(default_factory=list)
    ambiguous: bool = False

    @property
    def locked(self) -> bool:
        return self.lock_turns > 0

    @property
    def empty(self) -> bool:
        return self.value is None

    def make_fixed(self, value: int) -> None:
        """Pin a solved value; fixed cells carry no corruption-derived state."""
        self.value = value
        self.fixed = True
        self.correct = True
        self.corruption = 0
        self.fogged = False
        self.hidden = False
        self.lock_turns = 0
        self.candidates = []


CellGrid = List[List[Cell]]


@dataclass
class LevelModifier:
    type: ModifierType
    intensity: float = 0.0
    # 3x3 box indices
    regions: List[int] = field(default_factory=list)
    tier: AmbiguityTier = AmbiguityTier.NONE
    pockets: int = 0
    duration_ms: int = 0
    cooldown_ms: int = 0


@dataclass
class AmbiguityZone:
    cells: List[Coord]
    tier: AmbiguityTier
    alternatives: Dict[Coord, List[int]] = field(default_factory=dict)
    resolved: bool = False


@dataclass
class MoveRecord:
    row: int
    col: int
    value: int
    turn: int
    previous_value: Optional[int] = None
    validated: bool = False
    correct: Optional[bool] = None


@dataclass
class ForbiddenSlot:
    row: int
    col: int
    digit: int


@dataclass
class Upgrade:
    id: str
    name: str
    kind: UpgradeKind
    effect: str
    description: str = ""
    digit: Optional[int] = None
    params: Dict[str, Any] = field(default_factory=dict)
    cost: int = 0
    rarity: Rarity = Rarity.COMMON
    charges: Optional[int] = None
    max_charges: Optional[int] = None


@dataclass
class ShopOffer:
    id: str
    type: OfferType
    name: str
    rarity: Rarity
    base_cost_of: int
    effect: str
    base_cost_ed: int = 0
    digit: Optional[int] = None
    tier: int = 1
    run_limited: bool = True
    description_short: str = ""
    description_full: str = ""
    entropy_drain_per_floor: int = 0
    dependency: Optional[str] = None
    weight: float = 1.0
    params: Dict[str, Any] = field(default_factory=dict)
    charges: Optional[int] = None


@dataclass
class ShopSession:
    floor: int
    seed: int
    reroll_count: int = 0
    offers: List[ShopOffer] = field(default_factory=list)
    purchased_ids: List[str] = field(default_factory=list)
    rerolls_since_purchase: int = 0
    rares_seen: int = 0


@dataclass
class AppliedEffect:
    upgrade_id: str
    effect: str
    turn: int
    message: str = ""
