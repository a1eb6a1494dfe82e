from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from sudoku_rogue.effects import EFFECT_KEYS
from sudoku_rogue.types import OfferType, Rarity, ShopOffer
from sudoku_rogue.upgrades import PASSIVE_KEYS

logger = logging.getLogger(__name__)


class CatalogError(ValueError):
    """Raised when the offer catalog file is malformed."""


def default_catalog_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "shop_offers.json"


@dataclass
class OfferCatalog:
    offers: List[ShopOffer] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._by_id: Dict[str, ShopOffer] = {o.id: o for o in self.offers}

    def get(self, offer_id: str) -> Optional[ShopOffer]:
        return self._by_id.get(offer_id)

    def pool(self, offer_type: OfferType) -> List[ShopOffer]:
        return [o for o in self.offers if o.type == offer_type]

    def __len__(self) -> int:
        return len(self.offers)


def parse_offer(entry: dict) -> ShopOffer:
    try:
        offer_id = str(entry["id"])
        offer_type = OfferType(entry["type"])
        rarity = Rarity.parse(entry["rarity"])
        effect = str(entry["effect"])
    except KeyError as e:
        raise CatalogError(f"offer {entry.get('id', '?')!r} missing field {e}") from e
    except ValueError as e:
        raise CatalogError(f"offer {entry.get('id', '?')!r}: {e}") from e

    digit = entry.get("digit")
    if digit is not None and not (1 <= int(digit) <= 9):
        raise CatalogError(f"offer {offer_id!r}: digit {digit} out of range")
    if offer_type == OfferType.NUMBER_UPGRADE and digit is None and rarity != Rarity.ROGUE:
        raise CatalogError(f"offer {offer_id!r}: number upgrades need a digit")
    weight = float(entry.get("weight", 1.0))
    if weight <= 0:
        raise CatalogError(f"offer {offer_id!r}: weight must be positive")
    if effect not in EFFECT_KEYS and effect not in PASSIVE_KEYS:
        # Tolerated: the engine treats unknown effects as no-ops.
        logger.warning(f"[catalog] offer '{offer_id}' has unknown effect '{effect}'")

    return ShopOffer(
        id=offer_id,
        type=offer_type,
        name=entry.get("name", offer_id),
        rarity=rarity,
        base_cost_of=int(entry.get("base_cost_of", 0)),
        effect=effect,
        base_cost_ed=int(entry.get("base_cost_ed", 0)),
        digit=int(digit) if digit is not None else None,
        tier=int(entry.get("tier", 1)),
        run_limited=bool(entry.get("run_limited", True)),
        description_short=entry.get("description_short", ""),
        description_full=entry.get("description_full", entry.get("description_short", "")),
        entropy_drain_per_floor=int(entry.get("entropy_drain_per_floor", 0)),
        dependency=entry.get("dependency"),
        weight=weight,
        params=dict(entry.get("params", {})),
        charges=entry.get("charges"),
    )


def load_catalog(path: Optional[Path] = None) -> OfferCatalog:
    if path is None:
        path = default_catalog_path()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"cannot read offer catalog {path}: {e}") from e

    offers: List[ShopOffer] = []
    seen = set()
    for entry in raw.get("offers", []):
        offer = parse_offer(entry)
        if offer.id in seen:
            raise CatalogError(f"duplicate offer id {offer.id!r}")
        seen.add(offer.id)
        offers.append(offer)

    for offer in offers:
        if offer.dependency is not None and offer.dependency not in seen:
            raise CatalogError(f"offer {offer.id!r} depends on unknown offer {offer.dependency!r}")
    logger.debug(f"[catalog] loaded {len(offers)} offers from {path}")
    return OfferCatalog(offers)
