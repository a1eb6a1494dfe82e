"""Seeded shop offer generation.

Offers are drawn with a small linear congruential generator seeded from
(run seed, floor, reroll count), so the same inputs always produce the same
shelf.  Three slots draw from different pools; pity rules lift the minimum
rarity of the first slot after long dry spells.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from sudoku_rogue.catalog import OfferCatalog
from sudoku_rogue.corruption import inflation_rate
from sudoku_rogue.types import OfferType, Rarity, RerollMethod, ShopOffer, ShopSession

logger = logging.getLogger(__name__)

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280

SLOT2_CONSUMABLE_ROLL = 0.70
SLOT2_RUN_RELIC_ROLL = 0.95
SLOT3_NUMBER_ROLL = 0.50

PITY_REROLLS = 3
PITY_SHOPS_WITHOUT_RARE = 8

REROLL_BASE_COST = 25
REROLL_INCREMENT = 15
ED_REROLL_COST = 15
PREMIUM_REROLL_COST = 30


class SeededRandom:
    def __init__(self, seed: int) -> None:
        self.seed = seed

    def next(self) -> float:
        self.seed = (self.seed * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self.seed / LCG_MODULUS

    def next_int(self, upper: int) -> int:
        return int(self.next() * upper)

    def weighted_choice(self, items: Sequence[ShopOffer]) -> Optional[ShopOffer]:
        if not items:
            return None
        total = sum(item.weight for item in items)
        roll = self.next() * total
        for item in items:
            roll -= item.weight
            if roll <= 0:
                return item
        return items[-1]


def shop_seed(run_seed: int, floor: int, reroll_count: int) -> int:
    return run_seed * 1000 + floor * 100 + reroll_count


def select_offer(
    pool: Sequence[ShopOffer],
    rng: SeededRandom,
    exclude: Sequence[str],
    owned: Sequence[str],
    min_rarity: Optional[Rarity] = None,
) -> Optional[ShopOffer]:
    available = [
        o for o in pool
        if o.id not in exclude
        and (o.type == OfferType.CONSUMABLE or o.id not in owned)
        and (o.dependency is None or o.dependency in owned)
    ]
    if not available:
        return None
    if min_rarity is not None:
        lifted = [o for o in available if o.rarity >= min_rarity]
        if lifted:
            return rng.weighted_choice(lifted)
    return rng.weighted_choice(available)


def pity_rarity(rerolls_since_purchase: int, shops_since_rare: int,
                guarantee: Optional[Rarity] = None) -> Optional[Rarity]:
    """Minimum rarity forced onto slot 1, or None when no pity applies."""
    floor_rarity = guarantee
    if rerolls_since_purchase >= PITY_REROLLS:
        floor_rarity = max(floor_rarity or Rarity.UNCOMMON, Rarity.UNCOMMON)
    if shops_since_rare >= PITY_SHOPS_WITHOUT_RARE:
        floor_rarity = Rarity.RARE if floor_rarity is None else max(floor_rarity, Rarity.RARE)
    return floor_rarity


def generate_offers(
    catalog: OfferCatalog,
    run_seed: int,
    floor: int,
    reroll_count: int,
    owned: Sequence[str],
    rerolls_since_purchase: int = 0,
    shops_since_rare: int = 0,
    guarantee: Optional[Rarity] = None,
) -> Tuple[List[ShopOffer], Optional[Rarity]]:
    """Fill the three shop slots. Returns (offers, pity rarity applied)."""
    rng = SeededRandom(shop_seed(run_seed, floor, reroll_count))
    pity = pity_rarity(rerolls_since_purchase, shops_since_rare, guarantee)
    if pity is not None:
        logger.info(f"[shop] pity: slot 1 lifted to {pity.name}")

    offers: List[ShopOffer] = []
    exclude: List[str] = []

    def take(offer: Optional[ShopOffer]) -> Optional[ShopOffer]:
        if offer is not None:
            offers.append(offer)
            exclude.append(offer.id)
        return offer

    # Slot 1: number upgrades
    slot1 = take(select_offer(catalog.pool(OfferType.NUMBER_UPGRADE), rng, exclude, owned, pity))

    # Slot 2: consumables / run relics / permanent relics
    roll = rng.next()
    if roll < SLOT2_CONSUMABLE_ROLL:
        pool = catalog.pool(OfferType.CONSUMABLE)
    elif roll < SLOT2_RUN_RELIC_ROLL:
        pool = catalog.pool(OfferType.RELIC_RUN)
    else:
        pool = catalog.pool(OfferType.RELIC_PERMANENT)
    slot2_pity = pity if slot1 is None and pity is not None and pity >= Rarity.RARE else None
    take(select_offer(pool, rng, exclude, owned, slot2_pity))

    # Slot 3: number upgrades or rule mutators
    roll = rng.next()
    if roll < SLOT3_NUMBER_ROLL:
        pool = catalog.pool(OfferType.NUMBER_UPGRADE)
    else:
        pool = catalog.pool(OfferType.RULE_MUTATOR)
    take(select_offer(pool, rng, exclude, owned))

    return offers, pity


def has_rare(offers: Sequence[ShopOffer]) -> bool:
    return any(o.rarity >= Rarity.RARE for o in offers)


def create_session(catalog: OfferCatalog, floor: int, run_seed: int, owned: Sequence[str],
                   shops_since_rare: int = 0) -> ShopSession:
    offers, _ = generate_offers(catalog, run_seed, floor, 0, owned, 0, shops_since_rare)
    return ShopSession(
        floor=floor,
        seed=shop_seed(run_seed, floor, 0),
        offers=offers,
        rares_seen=1 if has_rare(offers) else 0,
    )


def reroll(
    session: ShopSession,
    catalog: OfferCatalog,
    run_seed: int,
    owned: Sequence[str],
    shops_since_rare: int = 0,
    guarantee: Optional[Rarity] = None,
) -> ShopSession:
    """Next shelf for this visit; the given session is left untouched."""
    count = session.reroll_count + 1
    since_purchase = session.rerolls_since_purchase + 1
    offers, _ = generate_offers(
        catalog, run_seed, session.floor, count, owned, since_purchase, shops_since_rare, guarantee,
    )
    return replace(
        session,
        seed=shop_seed(run_seed, session.floor, count),
        reroll_count=count,
        offers=offers,
        purchased_ids=list(session.purchased_ids),
        rerolls_since_purchase=since_purchase,
        rares_seen=session.rares_seen + (1 if has_rare(offers) else 0),
    )


def record_purchase(session: ShopSession, offer_id: str) -> ShopSession:
    return replace(
        session,
        offers=list(session.offers),
        purchased_ids=session.purchased_ids + [offer_id],
        rerolls_since_purchase=0,
    )


def inflated_cost(base: int, total_corruption: int, immune: bool = False) -> int:
    if base <= 0:
        return 0
    if immune:
        return base
    return int(math.ceil(base * (1.0 + inflation_rate(total_corruption))))


def offer_price(offer: ShopOffer, total_corruption: int, immune: bool = False) -> Tuple[int, int]:
    """(OF, ED) price; only the OF part inflates."""
    return inflated_cost(offer.base_cost_of, total_corruption, immune), offer.base_cost_ed


def reroll_price(session: ShopSession, method: RerollMethod, total_corruption: int,
                 immune: bool = False) -> Tuple[int, int]:
    if method == RerollMethod.ED:
        return 0, ED_REROLL_COST
    if method == RerollMethod.PREMIUM:
        return 0, PREMIUM_REROLL_COST
    base = REROLL_BASE_COST + REROLL_INCREMENT * session.reroll_count
    return inflated_cost(base, total_corruption, immune), 0


def reroll_guarantee(method: RerollMethod) -> Optional[Rarity]:
    if method == RerollMethod.ED:
        return Rarity.UNCOMMON
    if method == RerollMethod.PREMIUM:
        return Rarity.RARE
    return None

