import json
import logging

import pytest

from sudoku_rogue.config import EngineConfig, load_config, save_config
from sudoku_rogue.logging_config import configure_logging
from sudoku_rogue.save import (
    JsonProgressStore,
    MemoryProgressStore,
    default_achievements,
    record_defeat,
    record_floor_completed,
    record_game_started,
    record_victory,
    update_achievements,
)
from sudoku_rogue.telemetry import NullTelemetrySink, RecordingTelemetrySink, safe_emit


# -- config --------------------------------------------------------------------

def test_missing_config_uses_defaults(tmp_path):
    assert load_config(tmp_path / "nope.json") == EngineConfig()


def test_config_round_trip(tmp_path):
    path = tmp_path / "engine.json"
    save_config(EngineConfig(seed=7, max_floors=12), path)
    loaded = load_config(path)
    assert loaded.seed == 7 and loaded.max_floors == 12


@pytest.mark.parametrize("text", ["{broken", json.dumps({"not_a_field": 1})])
def test_bad_config_falls_back(tmp_path, text, caplog):
    path = tmp_path / "engine.json"
    path.write_text(text, encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        assert load_config(path) == EngineConfig()
    assert "[config]" in caplog.text


# -- stats & achievements ---------------------------------------------------------

def test_stat_counters():
    stats = record_game_started({})
    stats = record_floor_completed(stats, floor=3, reward=110, mistakes=0, floor_seconds=95.0)
    stats = record_floor_completed(stats, floor=4, reward=130, mistakes=2, floor_seconds=80.0)
    assert stats["total_games_played"] == 1
    assert stats["total_floors_completed"] == 2
    assert stats["highest_floor"] == 4
    assert stats["perfect_floors_completed"] == 1
    assert stats["total_currency_earned"] == 240
    assert stats["fastest_floor_time"] == 80.0
    assert stats["total_mistakes"] == 2


def test_win_streaks():
    stats = record_victory(record_victory({}))
    assert stats["current_win_streak"] == 2 and stats["best_win_streak"] == 2
    stats = record_defeat(stats)
    assert stats["current_win_streak"] == 0 and stats["best_win_streak"] == 2


def test_unknown_stat_keys_pass_through():
    stats = record_game_started({"legacy_counter": 5})
    assert stats["legacy_counter"] == 5


def test_achievements_unlock():
    stats = record_floor_completed({}, floor=1, reward=70, mistakes=0, floor_seconds=60.0)
    unlocked = {a["id"] for a in update_achievements(default_achievements(), stats) if a["unlocked"]}
    assert {"first_steps", "perfectionist", "speed_runner"} <= unlocked
    assert "floor_master" not in unlocked


def test_json_store_round_trip(tmp_path):
    store = JsonProgressStore(tmp_path / "progress")
    stats = record_game_started(store.load_stats())
    store.save_stats(stats)
    store.save_achievements(update_achievements(store.load_achievements(), stats))
    again = JsonProgressStore(tmp_path / "progress")
    assert again.load_stats()["total_games_played"] == 1
    assert len(again.load_achievements()) == len(default_achievements())


def test_json_store_survives_corrupt_files(tmp_path, caplog):
    store = JsonProgressStore(tmp_path)
    store.stats_path.write_text("{oops", encoding="utf-8")
    with caplog.at_level(logging.ERROR):
        stats = store.load_stats()
    assert stats["total_games_played"] == 0
    assert "[save]" in caplog.text


def test_memory_store_copies():
    store = MemoryProgressStore()
    stats = store.load_stats()
    stats["total_games_played"] = 99
    assert store.load_stats()["total_games_played"] == 0


# -- telemetry & logging --------------------------------------------------------------

class _ExplodingSink:
    def emit(self, event, payload):
        raise RuntimeError("sink down")


def test_safe_emit_never_raises(caplog):
    with caplog.at_level(logging.WARNING):
        safe_emit(_ExplodingSink(), "shop_open", {})
    assert "sink down" in caplog.text
    safe_emit(NullTelemetrySink(), "shop_open", {})


def test_recording_sink_keeps_payload_copies():
    sink = RecordingTelemetrySink()
    payload = {"floor": 1}
    safe_emit(sink, "shop_open", payload)
    payload["floor"] = 2
    assert sink.events == [("shop_open", {"floor": 1})]
    assert sink.names() == ["shop_open"]


@pytest.fixture
def restore_logging():
    package = logging.getLogger("sudoku_rogue")
    telemetry = logging.getLogger("sudoku_rogue.telemetry")
    saved = (list(package.handlers), package.level, package.propagate, telemetry.level)
    yield
    for handler in package.handlers:
        if handler not in saved[0]:
            handler.close()
    package.handlers, package.level, package.propagate = saved[0], saved[1], saved[2]
    telemetry.setLevel(saved[3])


def test_configure_logging(tmp_path, restore_logging):
    log_file = tmp_path / "engine.log"
    configure_logging("DEBUG", str(log_file))
    package = logging.getLogger("sudoku_rogue")
    assert package.level == logging.DEBUG
    assert len(package.handlers) == 2
    assert logging.getLogger("sudoku_rogue.telemetry").level == logging.DEBUG
