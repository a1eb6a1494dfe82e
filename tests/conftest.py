# tests/conftest.py
import random
import sys
from pathlib import Path

import pytest

# Add the source root to sys.path so "sudoku_rogue" imports without installing
SRC = Path(__file__).resolve().parents[1] / "implementation" / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sudoku_rogue.config import EngineConfig  # noqa: E402
from sudoku_rogue.generator import generate_solved_grid  # noqa: E402
from sudoku_rogue.simulation import Simulation  # noqa: E402
from sudoku_rogue.state import GameState  # noqa: E402
from sudoku_rogue.telemetry import RecordingTelemetrySink  # noqa: E402
from sudoku_rogue.types import Cell  # noqa: E402


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def solution():
    return generate_solved_grid(random.Random(42))


@pytest.fixture
def make_cells(solution):
    """Solved board of fixed cells with the given coordinates left open."""
    def build(empty=()):
        cells = [[Cell(value=solution[r][c], fixed=True) for c in range(9)] for r in range(9)]
        for r, c in empty:
            cells[r][c] = Cell()
        return cells
    return build


@pytest.fixture
def make_state(solution, make_cells):
    def build(empty=(), modifiers=None, **kwargs):
        return GameState(
            floor=kwargs.pop("floor", 1),
            cells=make_cells(empty),
            solution=solution,
            modifiers=list(modifiers or []),
            **kwargs,
        )
    return build


@pytest.fixture
def wrong_digit(solution):
    def pick(row, col):
        return solution[row][col] % 9 + 1
    return pick


@pytest.fixture
def telemetry():
    return RecordingTelemetrySink()


@pytest.fixture
def sim(telemetry):
    return Simulation(config=EngineConfig(seed=99), telemetry=telemetry, clock=lambda: 100.0)
