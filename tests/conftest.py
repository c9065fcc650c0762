"""Shared test fixtures with dual-mode support (fake engine vs real Stockfish).

Usage:
    pytest tests/                  # Fake UCI subprocess and stub tier only
    pytest tests/ --e2e            # Also run tests against real Stockfish

Fixtures:
    fake_engine        - argv factory for the fake UCI engine in a given mode.
    fast_config        - EngineConfig with short timeouts for protocol tests.
    stub_pipeline      - AnalysisPipeline over a started StubEngine.
    stockfish_path     - Real Stockfish binary; skipped without --e2e.
    enable_validation  - Sets CHESS_INSIGHT_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

from chess_insight.analysis import AnalysisPipeline
from chess_insight.config import AnalysisConfig, EngineConfig
from chess_insight.engine import StubEngine, find_stockfish
from chess_insight.errors import ProcessSpawnError

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_FAKE_ENGINE = Path(__file__).resolve().parent / "fixtures" / "fake_uci_engine.py"

sys.path.insert(0, str(_PROJECT_ROOT))


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is passed."""
    if config.getoption("--e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_engine():
    """Return a factory building the fake engine's argv for a mode."""

    def _command(mode: str = "normal") -> list[str]:
        return [sys.executable, str(_FAKE_ENGINE), mode]

    return _command


@pytest.fixture()
def fast_config():
    """Engine config with timeouts short enough for failure-path tests."""
    return EngineConfig(
        tier="external",
        handshake_timeout=2.0,
        search_timeout=2.0,
        search_grace=1.0,
        quit_grace=0.5,
    )


@pytest.fixture()
def stub_pipeline():
    """AnalysisPipeline over a started StubEngine with no simulated delay."""
    engine = StubEngine(EngineConfig(tier="stub", stub_delay=0.0))
    asyncio.run(engine.start())
    return AnalysisPipeline(engine, AnalysisConfig())


@pytest.fixture()
def stockfish_path(request):
    """Path to a real Stockfish binary; skipped unless --e2e finds one."""
    if not request.config.getoption("--e2e"):
        pytest.skip("needs --e2e")
    try:
        return find_stockfish()
    except ProcessSpawnError as exc:
        pytest.skip(str(exc))


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set CHESS_INSIGHT_VALIDATE=1 for the test.

    Restores the original env var value after the test.
    """
    original = os.environ.get("CHESS_INSIGHT_VALIDATE")
    os.environ["CHESS_INSIGHT_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("CHESS_INSIGHT_VALIDATE", None)
    else:
        os.environ["CHESS_INSIGHT_VALIDATE"] = original
