"""Tests for engine tiers and tier selection.

Binary discovery is tested with patched filesystem lookups; the native
tier runs against an in-memory binding module; the external tier uses the
fake UCI engine subprocess.
"""

from __future__ import annotations

import asyncio
import sys
import time
import types
from unittest.mock import AsyncMock, MagicMock, call, patch

import chess
import pytest

from chess_insight.client import ClientState, UCIClient
from chess_insight.config import EngineConfig
from chess_insight.engine import (
    NativeEngine,
    StubEngine,
    configure_engine,
    find_stockfish,
    select_engine,
)
from chess_insight.errors import (
    ConcurrentSearchError,
    EngineCrashError,
    EngineStateError,
    IllegalMoveError,
    NativeBindingUnavailable,
    ProcessSpawnError,
    ProtocolTimeoutError,
)
from chess_insight.models import CancelToken, EngineTier, SearchLimits


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeBinding:
    """In-process engine answering UCI lines with python-chess."""

    def __init__(self, fail_on: str | None = None, delays: dict | None = None):
        self.board = chess.Board()
        self.fail_on = fail_on
        self.delays = delays or {}
        self.commands = []
        self.stop = MagicMock()

    def command(self, line: str) -> list[str]:
        self.commands.append(line)
        tokens = line.split()
        if tokens[0] in self.delays:
            time.sleep(self.delays[tokens[0]])
        if tokens[0] == self.fail_on:
            raise RuntimeError("engine thread died")
        if tokens[0] == "uci":
            return [
                "id name NativeFish",
                "id author binding tests",
                "option name MultiPV type spin default 1 min 1 max 10",
                "uciok",
            ]
        if tokens[0] == "isready":
            return ["readyok"]
        if tokens[0] == "position":
            self.board = chess.Board()
            if "moves" in tokens:
                for move in tokens[tokens.index("moves") + 1:]:
                    self.board.push_uci(move)
            return []
        if tokens[0] == "go":
            move = sorted(m.uci() for m in self.board.legal_moves)[0]
            return [
                f"info depth {tokens[2]} seldepth 4 multipv 1 score cp 12 nodes 500 "
                f"nps 5000 time 2 pv {move}",
                f"bestmove {move}",
            ]
        return []


def _binding_module(binding: _FakeBinding) -> types.ModuleType:
    module = types.ModuleType("fake_native_binding")
    module.create_engine = lambda: binding
    return module


def _fake_external(fake_engine, mode="normal", **overrides) -> EngineConfig:
    command = fake_engine(mode)
    values = {
        "tier": "external",
        "engine_path": command[0],
        "engine_args": command[1:],
        "handshake_timeout": 2.0,
        "quit_grace": 0.5,
        "native_module": "chess_insight_missing_binding",
    }
    values.update(overrides)
    return EngineConfig(**values)


# ---------------------------------------------------------------------------
# Binary discovery
# ---------------------------------------------------------------------------


class TestFindStockfish:

    def test_stockfish_not_found(self):
        with patch("chess_insight.engine.Path.is_file", return_value=False), \
             patch("chess_insight.engine.shutil.which", return_value=None):
            with pytest.raises(ProcessSpawnError, match="Stockfish not found"):
                find_stockfish()

    def test_stockfish_found_via_which(self):
        with patch("chess_insight.engine.Path.is_file", return_value=False), \
             patch("chess_insight.engine.shutil.which", return_value="/usr/local/bin/stockfish"):
            assert find_stockfish() == "/usr/local/bin/stockfish"

    def test_stockfish_found_via_path(self):
        with patch("chess_insight.engine.Path.is_file", return_value=True), \
             patch("chess_insight.engine.shutil.which", return_value=None):
            assert find_stockfish() == "/opt/homebrew/bin/stockfish"

    def test_explicit_path_wins(self):
        with patch("chess_insight.engine.Path.is_file", return_value=True):
            assert find_stockfish("/custom/sf") == "/custom/sf"

    def test_explicit_missing_path_does_not_search(self):
        with patch("chess_insight.engine.Path.is_file", return_value=False), \
             patch("chess_insight.engine.shutil.which", return_value=None):
            with pytest.raises(ProcessSpawnError, match="/custom/sf"):
                find_stockfish("/custom/sf")


class TestConfigureEngine:

    def test_applies_hash_threads_and_skill(self):
        engine = MagicMock(tier=EngineTier.EXTERNAL)
        engine.set_option = AsyncMock()
        config = EngineConfig(hash_mb=64, threads=2, skill_level=5)
        asyncio.run(configure_engine(engine, config))
        assert engine.set_option.await_args_list == [
            call("Hash", 64), call("Threads", 2), call("Skill Level", 5),
        ]

    def test_full_strength_skips_skill_level(self):
        engine = MagicMock(tier=EngineTier.NATIVE)
        engine.set_option = AsyncMock()
        asyncio.run(configure_engine(engine, EngineConfig()))
        names = [c.args[0] for c in engine.set_option.await_args_list]
        assert "Skill Level" not in names

    def test_stub_is_left_alone(self):
        engine = MagicMock(tier=EngineTier.STUB)
        engine.set_option = AsyncMock()
        asyncio.run(configure_engine(engine, EngineConfig()))
        engine.set_option.assert_not_awaited()


# ---------------------------------------------------------------------------
# Stub tier
# ---------------------------------------------------------------------------


class TestStubEngine:

    def test_never_fails_to_start(self):
        engine = StubEngine()
        asyncio.run(engine.start())
        assert engine.ready
        assert engine.tier is EngineTier.STUB

    def test_search_is_deterministic_and_legal(self):
        async def scenario():
            engine = StubEngine(EngineConfig(stub_delay=0.0))
            await engine.start()
            await engine.set_position(chess.STARTING_FEN, ["e2e4"])
            first = await engine.search(SearchLimits(depth=6))
            second = await engine.search(SearchLimits(depth=6))
            return first, second

        first, second = asyncio.run(scenario())
        board = chess.Board()
        board.push_uci("e2e4")
        assert first.best_move == second.best_move == "a7a5"
        assert chess.Move.from_uci(first.best_move) in board.legal_moves
        assert first.depth == 6
        assert first.stopped is False

    def test_multipv_lines_descend(self):
        async def scenario():
            engine = StubEngine(EngineConfig(stub_delay=0.0))
            await engine.start()
            await engine.set_option("MultiPV", 3)
            return await engine.search(SearchLimits(nodes=5000))

        result = asyncio.run(scenario())
        scores = [line.score.score() for line in result.lines]
        assert len(result.lines) == 3
        assert scores == sorted(scores, reverse=True)
        assert result.nodes == 5000

    def test_no_legal_moves(self):
        mated = "rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3"

        async def scenario():
            engine = StubEngine(EngineConfig(stub_delay=0.0))
            await engine.start()
            await engine.set_position(mated)
            return await engine.search(SearchLimits(depth=1))

        result = asyncio.run(scenario())
        assert result.best_move is None
        assert result.lines == []

    def test_illegal_move_rejected(self):
        async def scenario():
            engine = StubEngine()
            await engine.start()
            await engine.set_position(chess.STARTING_FEN, ["z9z9"])

        with pytest.raises(IllegalMoveError):
            asyncio.run(scenario())

    def test_search_before_start_is_a_state_error(self):
        with pytest.raises(EngineStateError):
            asyncio.run(StubEngine().search(SearchLimits(depth=1)))

    def test_concurrent_search_and_cancel(self):
        async def scenario():
            engine = StubEngine(EngineConfig(stub_delay=5.0))
            await engine.start()
            first = asyncio.create_task(engine.search(SearchLimits(depth=3)))
            await asyncio.sleep(0.01)
            with pytest.raises(ConcurrentSearchError):
                await engine.search(SearchLimits(depth=3))
            await engine.cancel()
            return await first, engine.state

        result, state = asyncio.run(scenario())
        assert result.stopped is True
        assert result.best_move == "a2a3"
        assert state is ClientState.READY

    def test_cancel_token(self):
        async def scenario():
            engine = StubEngine(EngineConfig(stub_delay=5.0))
            await engine.start()
            token = CancelToken()
            search = asyncio.create_task(engine.search(SearchLimits(depth=3), token))
            await asyncio.sleep(0.01)
            token.cancel()
            return await search

        assert asyncio.run(scenario()).stopped is True

    def test_quit(self):
        async def scenario():
            engine = StubEngine()
            await engine.start()
            await engine.quit()
            return engine.state

        assert asyncio.run(scenario()) is ClientState.TERMINATED


# ---------------------------------------------------------------------------
# Native tier
# ---------------------------------------------------------------------------


class TestNativeEngine:

    def test_missing_binding(self):
        engine = NativeEngine(EngineConfig(native_module="chess_insight_missing_binding"))
        with pytest.raises(NativeBindingUnavailable):
            asyncio.run(engine.start())
        assert engine.state is ClientState.FAILED

    def test_search_through_binding(self):
        binding = _FakeBinding()

        async def scenario():
            engine = NativeEngine(EngineConfig(native_module="fake_native_binding"))
            await engine.start()
            await engine.set_position(chess.STARTING_FEN, ["d2d4"])
            result = await engine.search(SearchLimits(depth=7))
            await engine.quit()
            return engine, result

        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            engine, result = asyncio.run(scenario())

        assert engine.engine_name == "NativeFish"
        assert "MultiPV" in engine.options
        assert result.best_move == "a7a5"
        assert result.depth == 7
        assert binding.commands[-1] == "quit"
        assert engine.state is ClientState.TERMINATED

    def test_illegal_move_never_reaches_binding(self):
        binding = _FakeBinding()

        async def scenario():
            engine = NativeEngine(EngineConfig(native_module="fake_native_binding"))
            await engine.start()
            sent = len(binding.commands)
            with pytest.raises(IllegalMoveError):
                await engine.set_position(chess.STARTING_FEN, ["e2e5"])
            return sent

        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            sent = asyncio.run(scenario())
        assert len(binding.commands) == sent

    def test_binding_failure_is_a_crash(self):
        binding = _FakeBinding(fail_on="go")

        async def scenario():
            engine = NativeEngine(EngineConfig(native_module="fake_native_binding"))
            await engine.start()
            with pytest.raises(EngineCrashError):
                await engine.search(SearchLimits(depth=3))
            return engine.state

        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            assert asyncio.run(scenario()) is ClientState.FAILED

    def test_binding_without_factory(self):
        module = types.ModuleType("fake_native_binding")
        engine = NativeEngine(EngineConfig(native_module="fake_native_binding"))
        with patch.dict(sys.modules, {"fake_native_binding": module}):
            with pytest.raises(NativeBindingUnavailable, match="create_engine"):
                asyncio.run(engine.start())
        assert engine.state is ClientState.FAILED

    def test_factory_failure_is_a_crash(self):
        module = types.ModuleType("fake_native_binding")
        module.create_engine = MagicMock(
            side_effect=RuntimeError("binding could not load NNUE file"))
        engine = NativeEngine(EngineConfig(native_module="fake_native_binding"))
        with patch.dict(sys.modules, {"fake_native_binding": module}):
            with pytest.raises(EngineCrashError, match="NNUE"):
                asyncio.run(engine.start())
        assert engine.state is ClientState.FAILED

    def test_hanging_handshake_times_out(self):
        binding = _FakeBinding(delays={"uci": 0.5})
        engine = NativeEngine(EngineConfig(native_module="fake_native_binding",
                                           handshake_timeout=0.1))
        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            with pytest.raises(ProtocolTimeoutError, match="uci"):
                asyncio.run(engine.start())
        assert engine.state is ClientState.FAILED

    def test_hanging_search_times_out(self):
        binding = _FakeBinding(delays={"go": 0.5})

        async def scenario():
            engine = NativeEngine(EngineConfig(native_module="fake_native_binding",
                                               search_timeout=0.1))
            await engine.start()
            with pytest.raises(ProtocolTimeoutError, match="go"):
                await engine.search(SearchLimits(depth=3))
            state = engine.state
            await engine.quit()
            return state, engine.state

        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            failed, final = asyncio.run(scenario())
        assert failed is ClientState.FAILED
        assert final is ClientState.TERMINATED

    def test_movetime_search_gets_grace(self):
        binding = _FakeBinding(delays={"go": 0.2})

        async def scenario():
            engine = NativeEngine(EngineConfig(native_module="fake_native_binding",
                                               search_timeout=0.05, search_grace=1.0))
            await engine.start()
            return await engine.search(SearchLimits(movetime=100))

        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            result = asyncio.run(scenario())
        assert result.best_move == "a2a3"


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectEngine:

    def test_auto_falls_back_to_stub(self):
        config = EngineConfig(native_module="chess_insight_missing_binding",
                              engine_path="/nonexistent/stockfish")

        async def scenario():
            selection = await select_engine(config)
            await selection.engine.quit()
            return selection

        selection = asyncio.run(scenario())
        assert selection.tier is EngineTier.STUB
        assert isinstance(selection.engine, StubEngine)
        assert selection.fell_back
        assert [(a.tier, a.ok) for a in selection.attempts] == [
            (EngineTier.NATIVE, False),
            (EngineTier.EXTERNAL, False),
            (EngineTier.STUB, True),
        ]
        assert "not installed" in selection.attempts[0].reason

    def test_auto_survives_broken_native_factory(self):
        module = types.ModuleType("fake_native_binding")
        module.create_engine = MagicMock(
            side_effect=RuntimeError("binding could not load NNUE file"))
        config = EngineConfig(native_module="fake_native_binding")

        async def scenario():
            selection = await select_engine(config)
            await selection.engine.quit()
            return selection

        with patch.dict(sys.modules, {"fake_native_binding": module}), \
                patch("chess_insight.engine.find_stockfish",
                      side_effect=ProcessSpawnError("Stockfish not found")):
            selection = asyncio.run(scenario())
        assert selection.tier is EngineTier.STUB
        assert not selection.attempts[0].ok
        assert "NNUE" in selection.attempts[0].reason

    def test_auto_prefers_external_over_stub(self, fake_engine):
        config = _fake_external(fake_engine, tier="auto")

        async def scenario():
            selection = await select_engine(config)
            await selection.engine.quit()
            return selection

        selection = asyncio.run(scenario())
        assert selection.tier is EngineTier.EXTERNAL
        assert isinstance(selection.engine, UCIClient)
        assert selection.engine.engine_name == "FakeFish 1.0"

    def test_auto_prefers_native(self):
        binding = _FakeBinding()
        config = EngineConfig(native_module="fake_native_binding")

        async def scenario():
            selection = await select_engine(config)
            await selection.engine.quit()
            return selection

        with patch.dict(sys.modules, {"fake_native_binding": _binding_module(binding)}):
            selection = asyncio.run(scenario())
        assert selection.tier is EngineTier.NATIVE
        assert not selection.fell_back

    def test_handshake_timeout_falls_back(self, fake_engine):
        config = _fake_external(fake_engine, "no-uciok", tier="auto", handshake_timeout=0.3)

        async def scenario():
            selection = await select_engine(config)
            await selection.engine.quit()
            return selection

        selection = asyncio.run(scenario())
        assert selection.tier is EngineTier.STUB
        assert "uciok" in selection.attempts[1].reason

    def test_explicit_external_does_not_fall_back(self, fake_engine):
        config = _fake_external(fake_engine, "no-uciok", handshake_timeout=0.3)
        with pytest.raises(ProtocolTimeoutError):
            asyncio.run(select_engine(config))

    def test_explicit_native_does_not_fall_back(self):
        config = EngineConfig(tier="native", native_module="chess_insight_missing_binding")
        with pytest.raises(NativeBindingUnavailable):
            asyncio.run(select_engine(config))

    def test_explicit_stub(self):
        selection = asyncio.run(select_engine(EngineConfig(tier="stub")))
        assert selection.tier is EngineTier.STUB
        assert not selection.fell_back
