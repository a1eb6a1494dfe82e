"""Per-floor difficulty curve.

Floors 1-9 are hand-tuned; beyond that the curve turns procedural and each
floor draws a random handful of modifiers from the endless pool.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from typing import List

from sudoku_rogue.types import AmbiguityTier, LevelModifier, ModifierType

ENDLESS_BASE_DIFFICULTY = 60
ENDLESS_MAX_DIFFICULTY = 70
ENDLESS_DESCRIPTION = "Procedural volatility"


@dataclass
class FloorLevel:
    floor: int
    description: str
    base_difficulty: int
    modifiers: List[LevelModifier] = field(default_factory=list)


def _m(kind: ModifierType, intensity: float = 1.0, **kwargs) -> LevelModifier:
    return LevelModifier(type=kind, intensity=intensity, **kwargs)


DIFFICULTY_CURVE: List[FloorLevel] = [
    FloorLevel(1, "Foundational discipline", 35, [
        _m(ModifierType.DELAYED_VALIDATION, 3),
    ]),
    FloorLevel(2, "Mild opacity", 38, [
        _m(ModifierType.DELAYED_VALIDATION, 3),
        _m(ModifierType.FOG, 0.3, regions=[1, 4, 7]),
    ]),
    FloorLevel(3, "Localised uncertainty", 42, [
        _m(ModifierType.DELAYED_VALIDATION, 4),
        _m(ModifierType.FOG, 0.4, regions=[2, 5]),
        _m(ModifierType.PROBABILISTIC_HINTS, 0.6, regions=[0]),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A1, pockets=1),
    ]),
    FloorLevel(4, "Deterministic guess points", 46, [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, 0.5, regions=[3, 6]),
        _m(ModifierType.PROBABILISTIC_HINTS, 0.5, regions=[1, 4]),
        _m(ModifierType.FORCED_BIFURCATION),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A2, pockets=2),
    ]),
    FloorLevel(5, "Interference mechanics", 50, [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, 0.5, regions=[0, 8]),
        _m(ModifierType.CANDIDATE_SHUFFLE, regions=[2], cooldown_ms=3000),
        _m(ModifierType.TIMED_HIDE, duration_ms=5000),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A2, pockets=3),
    ]),
    FloorLevel(6, "Constraint distortion", 54, [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, 0.6, regions=[1, 4, 7]),
        _m(ModifierType.CONSTRAINT_SUPPRESSION, regions=[5]),
        _m(ModifierType.RECENT_HIDE, 3),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A3, pockets=2),
    ]),
    FloorLevel(7, "Layered ambiguity", 56, [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, 0.7, regions=[0, 2, 6, 8]),
        _m(ModifierType.INVERTED_SIGNALS, regions=[4]),
        _m(ModifierType.CANDIDATE_SUPPRESSION, 0.5),
        _m(ModifierType.CANDIDATE_SHUFFLE, regions=[1, 7], cooldown_ms=3000),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A3, pockets=4),
    ]),
    FloorLevel(8, "Systemic risk escalation", 58, [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, 0.8, regions=[0, 1, 2, 6, 7, 8]),
        _m(ModifierType.CELL_LOCKOUT, 3),
        _m(ModifierType.CANDIDATE_SHUFFLE, regions=[3, 4, 5], cooldown_ms=2500),
        _m(ModifierType.RECENT_HIDE, 4),
        _m(ModifierType.CANDIDATE_SUPPRESSION, 0.6),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A3, pockets=5),
    ]),
    FloorLevel(9, "High-pressure composite logic", 60, [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, 0.9, regions=list(range(9))),
        _m(ModifierType.CELL_LOCKOUT, 5),
        _m(ModifierType.CANDIDATE_SHUFFLE, regions=[0, 2, 4, 6, 8], cooldown_ms=2000),
        _m(ModifierType.INVERTED_SIGNALS, regions=[1, 7]),
        _m(ModifierType.CONSTRAINT_SUPPRESSION, regions=[3, 5]),
        _m(ModifierType.CANDIDATE_SUPPRESSION, 0.7),
        _m(ModifierType.FORCED_BIFURCATION),
        _m(ModifierType.AMBIGUITY_INJECTION, tier=AmbiguityTier.A4, pockets=6),
    ]),
]

_CURVE_BY_FLOOR = {level.floor: level for level in DIFFICULTY_CURVE}


def _random_boxes(rng: random.Random, low: int, high: int) -> List[int]:
    return rng.sample(range(9), rng.randint(low, high))


def _endless_pool(rng: random.Random) -> List[LevelModifier]:
    return [
        _m(ModifierType.DELAYED_VALIDATION, 5),
        _m(ModifierType.FOG, rng.random() * 0.5 + 0.5, regions=_random_boxes(rng, 3, 6)),
        _m(ModifierType.CELL_LOCKOUT, rng.randint(3, 5)),
        _m(ModifierType.CANDIDATE_SHUFFLE, regions=_random_boxes(rng, 2, 4),
           cooldown_ms=int(rng.random() * 1000 + 2000)),
        _m(ModifierType.INVERTED_SIGNALS, regions=_random_boxes(rng, 1, 2)),
        _m(ModifierType.CONSTRAINT_SUPPRESSION, regions=_random_boxes(rng, 1, 2)),
        _m(ModifierType.CANDIDATE_SUPPRESSION, rng.random() * 0.3 + 0.5),
        _m(ModifierType.FORCED_BIFURCATION),
        _m(ModifierType.TIMED_HIDE, duration_ms=int(rng.random() * 2000 + 3000)),
        _m(ModifierType.RECENT_HIDE, rng.randint(3, 4)),
    ]


def modifiers_for_floor(floor: int, rng: random.Random) -> List[LevelModifier]:
    level = _CURVE_BY_FLOOR.get(floor)
    if level is not None:
        # Fresh copies so pipeline/engine code can never edit the shared table.
        return [replace(m, regions=list(m.regions)) for m in level.modifiers]
    pool = _endless_pool(rng)
    count = min(rng.randint(5, 7), len(pool))
    return rng.sample(pool, count)


def difficulty_for_floor(floor: int) -> int:
    level = _CURVE_BY_FLOOR.get(floor)
    if level is not None:
        return level.base_difficulty
    return min(ENDLESS_BASE_DIFFICULTY + (floor - len(DIFFICULTY_CURVE)), ENDLESS_MAX_DIFFICULTY)


def description_for_floor(floor: int) -> str:
    level = _CURVE_BY_FLOOR.get(floor)
    return level.description if level is not None else ENDLESS_DESCRIPTION
