"""Progress persistence: lifetime statistics and achievements.

Both are stored as plain JSON blobs.  The engine only reads and bumps the
named counters below; any other keys in a stored blob are carried through
untouched so newer saves survive older engines.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

Stats = Dict[str, Any]
Achievements = List[Dict[str, Any]]

STAT_DEFAULTS: Stats = {
    "total_games_played": 0,
    "total_floors_completed": 0,
    "highest_floor": 0,
    "perfect_floors_completed": 0,
    "total_currency_earned": 0,
    "total_upgrades_purchased": 0,
    "fastest_floor_time": None,
    "total_mistakes": 0,
    "games_won": 0,
    "current_win_streak": 0,
    "best_win_streak": 0,
}

# (id, name, requirement, stat counter driving progress)
_ACHIEVEMENT_TABLE = [
    ("first_steps", "First Steps", 1, "total_floors_completed"),
    ("floor_master", "Floor Master", 25, "total_floors_completed"),
    ("floor_legend", "Floor Legend", 100, "total_floors_completed"),
    ("perfectionist", "Perfectionist", 1, "perfect_floors_completed"),
    ("flawless_master", "Flawless Master", 10, "perfect_floors_completed"),
    ("rich_collector", "Rich Collector", 1000, "total_currency_earned"),
    ("upgrade_addict", "Upgrade Addict", 20, "total_upgrades_purchased"),
    ("survivor", "Survivor", 9, "highest_floor"),
    ("victory_first", "First Victory", 1, "games_won"),
    ("win_streak", "Unbroken", 3, "best_win_streak"),
    ("speed_runner", "Speed Runner", 120, None),
    ("mistake_free", "Mistake Free", 1, None),
]


def default_stats() -> Stats:
    return dict(STAT_DEFAULTS)


def default_achievements() -> Achievements:
    return [
        {"id": aid, "name": name, "requirement": req, "progress": 0, "unlocked": False}
        for aid, name, req, _ in _ACHIEVEMENT_TABLE
    ]


def _with_defaults(stats: Optional[Stats]) -> Stats:
    out = default_stats()
    if stats:
        out.update(stats)
    return out


def record_game_started(stats: Stats) -> Stats:
    out = _with_defaults(stats)
    out["total_games_played"] += 1
    return out


def record_floor_completed(stats: Stats, floor: int, reward: int, mistakes: int,
                           floor_seconds: float) -> Stats:
    out = _with_defaults(stats)
    out["total_floors_completed"] += 1
    out["highest_floor"] = max(out["highest_floor"], floor)
    if mistakes == 0:
        out["perfect_floors_completed"] += 1
    out["total_currency_earned"] += reward
    fastest = out["fastest_floor_time"]
    out["fastest_floor_time"] = floor_seconds if fastest is None else min(fastest, floor_seconds)
    out["total_mistakes"] += mistakes
    return out


def record_victory(stats: Stats) -> Stats:
    out = _with_defaults(stats)
    out["games_won"] += 1
    out["current_win_streak"] += 1
    out["best_win_streak"] = max(out["best_win_streak"], out["current_win_streak"])
    return out


def record_defeat(stats: Stats) -> Stats:
    out = _with_defaults(stats)
    out["current_win_streak"] = 0
    return out


def record_upgrade_purchased(stats: Stats) -> Stats:
    out = _with_defaults(stats)
    out["total_upgrades_purchased"] += 1
    return out


def update_achievements(achievements: Achievements, stats: Stats, run_mistakes: int = 0) -> Achievements:
    counters = {aid: counter for aid, _, _, counter in _ACHIEVEMENT_TABLE}
    stats = _with_defaults(stats)
    known = {a.get("id") for a in achievements}
    updated: Achievements = []
    for entry in list(achievements) + [a for a in default_achievements() if a["id"] not in known]:
        item = dict(entry)
        aid = item.get("id")
        progress = item.get("progress", 0)
        requirement = item.get("requirement", 1)
        counter = counters.get(aid)
        if counter is not None:
            progress = stats.get(counter) or 0
        elif aid == "speed_runner":
            fastest = stats.get("fastest_floor_time")
            if fastest is not None and fastest <= requirement:
                progress = requirement
        elif aid == "mistake_free":
            if stats.get("games_won", 0) > 0 and run_mistakes == 0:
                progress = max(progress, 1)
        item["progress"] = progress
        if progress >= requirement and not item.get("unlocked"):
            item["unlocked"] = True
            logger.info(f"[save] achievement unlocked: {aid}")
        updated.append(item)
    return updated


class ProgressStore(Protocol):
    def load_stats(self) -> Stats: ...

    def save_stats(self, stats: Stats) -> None: ...

    def load_achievements(self) -> Achievements: ...

    def save_achievements(self, achievements: Achievements) -> None: ...


class MemoryProgressStore:
    def __init__(self, stats: Optional[Stats] = None, achievements: Optional[Achievements] = None) -> None:
        self.stats: Stats = dict(stats) if stats else default_stats()
        self.achievements: Achievements = [dict(a) for a in achievements] if achievements else default_achievements()

    def load_stats(self) -> Stats:
        return dict(self.stats)

    def save_stats(self, stats: Stats) -> None:
        self.stats = dict(stats)

    def load_achievements(self) -> Achievements:
        return [dict(a) for a in self.achievements]

    def save_achievements(self, achievements: Achievements) -> None:
        self.achievements = [dict(a) for a in achievements]


class JsonProgressStore:
    """Stats and achievements as two JSON files in one directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    @property
    def stats_path(self) -> Path:
        return self.directory / "stats.json"

    @property
    def achievements_path(self) -> Path:
        return self.directory / "achievements.json"

    def _read(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[save] Error loading {path.name}: {e}")
            return None

    def _write(self, path: Path, data: Any) -> None:
        """Write JSON atomically (tmp + rename)."""
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            logger.error(f"[save] Error saving {path.name}: {e}")

    def load_stats(self) -> Stats:
        data = self._read(self.stats_path)
        if not isinstance(data, dict):
            return default_stats()
        return _with_defaults(data)

    def save_stats(self, stats: Stats) -> None:
        self._write(self.stats_path, stats)

    def load_achievements(self) -> Achievements:
        data = self._read(self.achievements_path)
        if not isinstance(data, list):
            return default_achievements()
        return [a for a in data if isinstance(a, dict)]

    def save_achievements(self, achievements: Achievements) -> None:
        self._write(self.achievements_path, achievements)
