"""Engine tiers and the selector that picks one of them.

Three implementations share the EngineBase interface:

- ``NativeEngine``: an in-process binding, imported by module name.
- ``UCIClient``: an external Stockfish-compatible process (see client.py).
- ``StubEngine``: deterministic placeholder that always starts.

``select_engine`` walks an explicit ordered list of tier constructors and
records why each skipped tier failed.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import chess

from chess_insight.client import ClientState, EngineBase, UCIClient
from chess_insight.config import EngineConfig
from chess_insight.errors import (
    EngineCrashError,
    EngineError,
    NativeBindingUnavailable,
    ProcessSpawnError,
    ProtocolTimeoutError,
)
from chess_insight.models import (
    CancelToken,
    EngineResult,
    EngineTier,
    LegalityOracle,
    Position,
    SearchLimits,
)
from chess_insight.uci import (
    SearchAccumulator,
    format_go,
    format_position,
    format_setoption,
    parse_bestmove,
    parse_id,
    parse_option,
)

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

# Fixed scores handed out by the stub, best first
_STUB_TOP_CP = 20
_STUB_STEP_CP = 15


def find_stockfish(explicit: str | None = None) -> str:
    """Locate a Stockfish binary.

    Checks the explicit path, then known install paths, then PATH.

    Returns:
        Path to the Stockfish binary.

    Raises:
        ProcessSpawnError: If no usable binary is found.
    """
    if explicit:
        if Path(explicit).is_file() or shutil.which(explicit):
            return explicit
        raise ProcessSpawnError(f"Engine binary not found: {explicit}")

    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise ProcessSpawnError(
        "Stockfish not found. Install it or set CHESS_INSIGHT_ENGINE_PATH."
    )


async def configure_engine(engine: EngineBase, config: EngineConfig) -> None:
    """Apply Hash, Threads and Skill Level to a freshly started engine."""
    if engine.tier is EngineTier.STUB:
        return
    await engine.set_option("Hash", config.hash_mb)
    await engine.set_option("Threads", config.threads)
    if config.skill_level < 20:
        await engine.set_option("Skill Level", config.skill_level)


# ---------------------------------------------------------------------------
# Stub tier
# ---------------------------------------------------------------------------


class StubEngine(EngineBase):
    """Inert engine with fixed, legal, deterministic answers.

    Legal moves are sorted by coordinate string; the first is always the
    best move, and each later line scores 0.15 pawns lower.
    """

    tier = EngineTier.STUB

    def __init__(self, config: EngineConfig | None = None,
                 oracle: LegalityOracle | None = None) -> None:
        super().__init__(oracle)
        self.config = config or EngineConfig()
        self.engine_name = "Stub"
        self.engine_author = "chess-insight"
        self.multipv = 1
        self._position = Position()
        self._stop: asyncio.Event | None = None

    async def start(self) -> None:
        self._require("start", ClientState.UNINITIALIZED)
        self.state = ClientState.READY
        logger.debug("Stub engine ready")

    async def new_game(self) -> None:
        self._require("start a new game", ClientState.READY)
        self._position = Position()

    async def set_option(self, name: str, value) -> None:
        self._require("set an option", ClientState.READY)
        self.options[name] = {"name": name, "value": value}
        if name.lower() == "multipv":
            self.multipv = max(1, int(value))

    async def set_position(self, fen: str, moves=()) -> None:
        self._require("set the position", ClientState.READY)
        moves = self._validate_moves(fen, moves)
        self._position = Position(fen, tuple(moves))

    async def search(self, limits: SearchLimits,
                     cancel_token: CancelToken | None = None) -> EngineResult:
        self._claim_search()
        self._stop = asyncio.Event()
        try:
            stopped = await self._pause(cancel_token)
            board = chess.Board(self._position.fen)
            moves = sorted(move.uci() for move in board.legal_moves)
            depth = limits.depth or 1
            nodes = limits.nodes or 1000 * depth
            accumulator = SearchAccumulator()
            for index, move in enumerate(moves[: self.multipv], start=1):
                cp = _STUB_TOP_CP - _STUB_STEP_CP * (index - 1)
                accumulator.feed_line(
                    f"info depth {depth} seldepth {depth} multipv {index} "
                    f"score cp {cp} nodes {nodes} nps {nodes * 10} time 1 pv {move}"
                )
            return accumulator.result(moves[0] if moves else None, stopped=stopped)
        finally:
            if self.state is ClientState.SEARCHING:
                self.state = ClientState.READY

    async def _pause(self, cancel_token: CancelToken | None) -> bool:
        waits = [asyncio.ensure_future(self._stop.wait())]
        if cancel_token is not None:
            waits.append(asyncio.ensure_future(cancel_token.wait()))
        try:
            done, _ = await asyncio.wait(waits, timeout=self.config.stub_delay)
        finally:
            for task in waits:
                task.cancel()
        return bool(done)

    async def cancel(self) -> None:
        self._require("cancel", ClientState.SEARCHING)
        self._stop.set()

    async def quit(self) -> None:
        if self._stop is not None:
            self._stop.set()
        self.state = ClientState.TERMINATED


# ---------------------------------------------------------------------------
# Native tier
# ---------------------------------------------------------------------------


class NativeEngine(EngineBase):
    """Engine running in-process through an importable binding.

    The binding module exposes ``create_engine()`` returning an object with
    ``command(line) -> list[str]`` (UCI in, UCI lines out, blocking until
    the command's answer is complete) and ``stop()``. Blocking calls run in
    a worker thread so the event loop stays free.
    """

    tier = EngineTier.NATIVE

    def __init__(self, config: EngineConfig | None = None,
                 oracle: LegalityOracle | None = None) -> None:
        super().__init__(oracle)
        self.config = config or EngineConfig()
        self._binding = None
        self._stopping = False

    async def start(self) -> None:
        self._require("start", ClientState.UNINITIALIZED)
        self.state = ClientState.STARTING
        try:
            module = importlib.import_module(self.config.native_module)
        except ImportError as exc:
            self.state = ClientState.FAILED
            raise NativeBindingUnavailable(
                f"Native engine binding {self.config.native_module!r} is not installed"
            ) from exc
        create = getattr(module, "create_engine", None)
        if create is None:
            self.state = ClientState.FAILED
            raise NativeBindingUnavailable(
                f"Native engine binding {self.config.native_module!r} has no create_engine()"
            )
        try:
            self._binding = create()
        except (RuntimeError, OSError) as exc:
            logger.error("Native engine could not be created: %s", exc)
            self.state = ClientState.FAILED
            raise EngineCrashError(f"Native engine could not be created: {exc}") from exc

        timeout = self.config.handshake_timeout
        for line in await self._call("uci", timeout):
            if line.startswith("id "):
                field_name, value = parse_id(line)
                if field_name == "name":
                    self.engine_name = value
                elif field_name == "author":
                    self.engine_author = value
            elif line.startswith("option "):
                option = parse_option(line)
                self.options[option["name"]] = option
        await self._call("isready", timeout)
        self.state = ClientState.READY
        logger.info("Native engine ready: %s", self.engine_name or self.config.native_module)

    async def new_game(self) -> None:
        self._require("start a new game", ClientState.READY)
        await self._call("ucinewgame")
        await self._call("isready")

    async def set_option(self, name: str, value) -> None:
        self._require("set an option", ClientState.READY)
        await self._call(format_setoption(name, value))

    async def set_position(self, fen: str, moves=()) -> None:
        self._require("set the position", ClientState.READY)
        moves = self._validate_moves(fen, moves)
        await self._call(format_position(fen, moves))

    async def search(self, limits: SearchLimits,
                     cancel_token: CancelToken | None = None) -> EngineResult:
        self._claim_search()
        self._stopping = False
        watcher = None
        if cancel_token is not None:
            watcher = asyncio.create_task(self._watch(cancel_token))
        if limits.movetime is not None:
            timeout = limits.movetime / 1000 + self.config.search_grace
        else:
            timeout = self.config.search_timeout
        try:
            lines = await self._call(format_go(limits), timeout)
        finally:
            if watcher is not None:
                watcher.cancel()

        accumulator = SearchAccumulator()
        best_move = ponder_move = None
        for line in lines:
            if line.startswith("info"):
                accumulator.feed_line(line)
            elif line.startswith("bestmove"):
                best_move, ponder_move = parse_bestmove(line)
        self.state = ClientState.READY
        return accumulator.result(best_move, ponder_move, stopped=self._stopping)

    async def _watch(self, token: CancelToken) -> None:
        await token.wait()
        if self.state is ClientState.SEARCHING:
            await self.cancel()

    async def cancel(self) -> None:
        self._require("cancel", ClientState.SEARCHING)
        self._stopping = True
        await asyncio.to_thread(self._binding.stop)

    async def quit(self) -> None:
        if self.state is ClientState.TERMINATED:
            return
        if self._binding is not None and self.state is not ClientState.FAILED:
            try:
                await self._call("quit", self.config.quit_grace)
            except (EngineCrashError, ProtocolTimeoutError):
                logger.debug("Native engine failed while quitting")
        self._binding = None
        self.state = ClientState.TERMINATED

    async def _call(self, line: str, timeout: float | None = None) -> list[str]:
        timeout = timeout or self.config.handshake_timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._binding.command, line), timeout
            )
        except asyncio.TimeoutError:
            reason = f"Native engine gave no answer to {line.split()[0]!r} within {timeout:.1f}s"
            logger.error(reason)
            self.state = ClientState.FAILED
            raise ProtocolTimeoutError(reason) from None
        except RuntimeError as exc:
            logger.error("Native engine failed on %r: %s", line, exc)
            self.state = ClientState.FAILED
            raise EngineCrashError(f"Native engine failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


@dataclass
class TierAttempt:
    tier: EngineTier
    ok: bool
    reason: str = ""


@dataclass
class EngineSelection:
    """The engine that was started plus the record of how it was chosen."""

    engine: EngineBase
    tier: EngineTier
    attempts: list[TierAttempt] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return any(not attempt.ok for attempt in self.attempts)


def _build_engine(tier: EngineTier, config: EngineConfig,
                  oracle: LegalityOracle | None) -> EngineBase:
    if tier is EngineTier.NATIVE:
        return NativeEngine(config, oracle)
    if tier is EngineTier.EXTERNAL:
        path = find_stockfish(config.engine_path)
        return UCIClient([path, *config.engine_args], config, oracle)
    return StubEngine(config, oracle)


async def select_engine(config: EngineConfig | None = None,
                        oracle: LegalityOracle | None = None) -> EngineSelection:
    """Start one working engine according to ``config.tier``.

    Under ``auto`` the tiers are tried in order native, external, stub;
    each failure is logged and recorded. An explicit tier never falls back.

    Raises:
        EngineError: Only for an explicit tier that fails to start.
    """
    config = config or EngineConfig()
    if config.tier == "auto":
        order = [EngineTier.NATIVE, EngineTier.EXTERNAL, EngineTier.STUB]
    else:
        order = [EngineTier(config.tier)]

    attempts: list[TierAttempt] = []
    for tier in order:
        engine = None
        try:
            engine = _build_engine(tier, config, oracle)
            await engine.start()
            await configure_engine(engine, config)
        except EngineError as exc:
            if engine is not None:
                await engine.quit()
            if config.tier != "auto":
                raise
            logger.warning("Engine tier %s unavailable: %s", tier.value, exc)
            attempts.append(TierAttempt(tier, False, str(exc)))
            continue
        attempts.append(TierAttempt(tier, True))
        logger.info("Using %s engine tier", tier.value)
        return EngineSelection(engine, tier, attempts)

    raise EngineError(f"No engine tier could be started: {attempts}")
