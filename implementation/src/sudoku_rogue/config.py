from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def _implementation_dir() -> Path:
    here = Path(__file__).resolve()
    return here.parents[2]


def default_config_path() -> Path:
    return _implementation_dir() / "engine.json"


@dataclass
class EngineConfig:
    max_floors: int = 9
    base_max_mistakes: int = 3

    starting_order_fragments: int = 100
    starting_entropy_dust: int = 0
    starter_consumable: str = "solve_tile"
    starter_charges: int = 1

    floor_reward_base: int = 50
    floor_reward_per_floor: int = 20
    ed_reward_per_floor: int = 5

    spread_base_cells: int = 2
    spread_max_cells: int = 8

    # Seeds the engine RNG (generator, pipeline, corruption, effects).
    # None draws a fresh seed per engine.
    seed: Optional[int] = None

    progress_dir: str = ""


def load_config(path: Path | None = None) -> EngineConfig:
    if path is None:
        path = default_config_path()
    if not path.exists():
        return EngineConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"[config] cannot read {path}: {e}; using defaults")
        return EngineConfig()
    try:
        return EngineConfig(**data)
    except TypeError as e:
        logger.warning(f"[config] invalid config {path}: {e}; using defaults")
        return EngineConfig()


def save_config(config: EngineConfig, path: Path | None = None) -> None:
    if path is None:
        path = default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(config), indent=2), encoding="utf-8")
