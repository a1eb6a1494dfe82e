"""Owned upgrades: conversion from shop offers, passive flags and charges.

Number upgrades are bound to a digit and fire on correct placements of it.
Passive upgrades (relics and rule mutators) are read as flags by the engine.
Consumables carry charges and leave the inventory once spent.
"""
from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from sudoku_rogue.types import OfferType, Rarity, ShopOffer, Upgrade, UpgradeKind

logger = logging.getLogger(__name__)


class Passive(str, Enum):
    NO_SPREAD = "no_spread"
    FIRST_MISTAKE_SAFE = "first_mistake_safe"
    CORRUPT_GOLD = "corrupt_gold"
    DEGRADATION_RESIST = "degradation_resist"
    CORRUPTION_SHIELD = "corruption_shield"
    WIPE_IMMUNITY = "candidate_wipe_immunity"
    AMBIGUITY_CONTAIN = "ambiguity_contain"
    MISTAKE_NEUTRALIZE = "mistake_neutralize"
    GOLDEN_NUMBER = "golden_number"
    CURRENCY_MULTIPLIER = "currency_multiplier"
    MAX_MISTAKES = "max_mistakes"
    INFLATION_IMMUNITY = "inflation_immunity"
    FLOW_STATE = "flow_state"
    START_SHIELD = "start_shield"


PASSIVE_KEYS = {p.value for p in Passive}
CORRUPT_GOLD_PER_MISTAKE = 10

_KIND_FOR_OFFER = {
    OfferType.NUMBER_UPGRADE: UpgradeKind.NUMBER,
    OfferType.CONSUMABLE: UpgradeKind.CONSUMABLE,
    OfferType.RELIC_RUN: UpgradeKind.PASSIVE,
    OfferType.RELIC_PERMANENT: UpgradeKind.PASSIVE,
    OfferType.RULE_MUTATOR: UpgradeKind.PASSIVE,
}


def upgrade_from_offer(offer: ShopOffer, rng: random.Random, cost: int = 0) -> Upgrade:
    kind = _KIND_FOR_OFFER[offer.type]
    digit = offer.digit
    if offer.effect == Passive.GOLDEN_NUMBER.value and digit is None:
        digit = rng.randint(1, 9)
    charges = offer.charges
    if kind == UpgradeKind.CONSUMABLE and charges is None:
        charges = 1
    if offer.effect == Passive.MISTAKE_NEUTRALIZE.value and charges is None:
        charges = int(offer.params.get("charges", 1))
    return Upgrade(
        id=offer.id,
        name=offer.name,
        kind=kind,
        effect=offer.effect,
        description=offer.description_short,
        digit=digit,
        params=dict(offer.params),
        cost=cost,
        rarity=offer.rarity,
        charges=charges,
        max_charges=charges,
    )


def with_effect(upgrades: Iterable[Upgrade], effect: str) -> List[Upgrade]:
    return [u for u in upgrades if u.effect == effect]


def has_passive(upgrades: Iterable[Upgrade], passive: Passive) -> bool:
    return any(u.effect == passive.value and u.kind != UpgradeKind.CONSUMABLE for u in upgrades)


def number_upgrades_for(upgrades: Iterable[Upgrade], digit: int) -> List[Upgrade]:
    return [
        u for u in upgrades
        if u.kind == UpgradeKind.NUMBER and u.digit == digit and u.rarity != Rarity.ROGUE
    ]


def rogue_upgrades(upgrades: Iterable[Upgrade]) -> List[Upgrade]:
    return [u for u in upgrades if u.rarity == Rarity.ROGUE and u.kind != UpgradeKind.CONSUMABLE]


def golden_digits(upgrades: Iterable[Upgrade]) -> List[int]:
    return [u.digit for u in with_effect(upgrades, Passive.GOLDEN_NUMBER.value) if u.digit is not None]


def max_mistake_bonus(upgrades: Iterable[Upgrade]) -> int:
    return sum(int(u.params.get("amount", 1)) for u in with_effect(upgrades, Passive.MAX_MISTAKES.value))


def start_shield_charges(upgrades: Iterable[Upgrade]) -> int:
    return sum(int(u.params.get("amount", 1)) for u in with_effect(upgrades, Passive.START_SHIELD.value))


def find_upgrade(upgrades: Sequence[Upgrade], upgrade_id: str) -> Optional[Upgrade]:
    for upgrade in upgrades:
        if upgrade.id == upgrade_id:
            return upgrade
    return None


def use_charge(upgrades: List[Upgrade], upgrade: Upgrade) -> None:
    """Spend one charge; consumables are dropped from the inventory at zero."""
    if upgrade.charges is None:
        return
    upgrade.charges = max(0, upgrade.charges - 1)
    if upgrade.charges == 0 and upgrade.kind == UpgradeKind.CONSUMABLE:
        upgrades.remove(upgrade)
        logger.debug(f"[upgrades] consumable '{upgrade.id}' depleted")


def neutralize_mistakes(upgrades: List[Upgrade], mistakes: int) -> int:
    """Cancel mistakes with neutralizer charges in inventory order; return what is left."""
    for upgrade in with_effect(upgrades, Passive.MISTAKE_NEUTRALIZE.value):
        while mistakes > 0 and (upgrade.charges or 0) > 0:
            upgrade.charges -= 1
            mistakes -= 1
            logger.info(f"[upgrades] '{upgrade.id}' neutralized a mistake ({upgrade.charges} left)")
    return mistakes
