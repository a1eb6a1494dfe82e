"""Telemetry collaborator.

The engine emits named events with a flat payload and never waits on, or
depends on, delivery.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Tuple

logger = logging.getLogger(__name__)

SHOP_OPEN = "shop_open"
SHOP_REROLL = "shop_reroll"
SHOP_PURCHASE = "shop_purchase"
SHOP_SKIP = "shop_skip"
SHOP_PITY_TRIGGERED = "shop_pity_triggered"
POWERUP_APPLIED = "powerup_applied"
POWERUP_EFFECT_RESULT = "powerup_effect_result"


class TelemetrySink(Protocol):
    def emit(self, event: str, payload: Dict[str, Any]) -> None: ...


class LoggingTelemetrySink:
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"[telemetry] {event} {payload}")


class NullTelemetrySink:
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        pass


class RecordingTelemetrySink:
    """Keeps events in memory; handy for inspection and tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


def safe_emit(sink: TelemetrySink, event: str, payload: Dict[str, Any]) -> None:
    """Fire and forget: a failing sink is logged, never propagated into a turn."""
    try:
        sink.emit(event, payload)
    except Exception as e:
        logger.warning(f"[telemetry] sink failed on '{event}': {e}")
