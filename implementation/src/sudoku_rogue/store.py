from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Wallet:
    """Run currencies: Order Fragments (OF) and Entropy Dust (ED)."""
    order_fragments: int = 0
    total_order_fragments: int = 0
    order_fragments_this_floor: int = 0

    entropy_dust: int = 0
    total_entropy_dust: int = 0

    def add_order_fragments(self, amount: int) -> None:
        if amount <= 0:
            return
        self.order_fragments += amount
        self.total_order_fragments += amount
        self.order_fragments_this_floor += amount

    def add_entropy_dust(self, amount: int) -> None:
        if amount <= 0:
            return
        self.entropy_dust += amount
        self.total_entropy_dust += amount

    def can_afford(self, order_fragments: int = 0, entropy_dust: int = 0) -> bool:
        return self.order_fragments >= order_fragments and self.entropy_dust >= entropy_dust

    def spend(self, order_fragments: int = 0, entropy_dust: int = 0) -> bool:
        """Deduct both costs atomically. Returns False (and spends nothing) if short."""
        if not self.can_afford(order_fragments, entropy_dust):
            return False
        self.order_fragments -= max(0, order_fragments)
        self.entropy_dust -= max(0, entropy_dust)
        return True

    def start_floor(self) -> None:
        self.order_fragments_this_floor = 0
