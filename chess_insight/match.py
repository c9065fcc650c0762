"""Engine-vs-engine games, one independently selected engine per side."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field

import chess

from chess_insight.config import EngineConfig
from chess_insight.engine import EngineSelection, select_engine
from chess_insight.errors import EngineError
from chess_insight.models import SearchLimits
from chess_insight.openings import OpeningBook

logger = logging.getLogger(__name__)

DEFAULT_MAX_PLIES = 200


@dataclass
class MatchMove:
    ply: int
    move: str
    san: str
    color: str
    source: str  # "book" or "engine"


@dataclass
class MatchResult:
    moves: list[MatchMove] = field(default_factory=list)
    result: str = "*"
    termination: str = ""
    final_fen: str = chess.STARTING_FEN
    tiers: dict = field(default_factory=dict)

    @property
    def uci_moves(self) -> list[str]:
        return [m.move for m in self.moves]


class EngineMatch:
    """Play a game between two engines.

    Args:
        white: Engine config for White.
        black: Engine config for Black.
        white_limits: Search limits for White; default 1000 ms per move.
        black_limits: Search limits for Black; default 1000 ms per move.
        book: Opening book used while within its depth; None disables it.
        seed: Seed for the book move RNG.
        max_plies: Ply cap after which the game is adjudicated "*".
    """

    def __init__(self, white: EngineConfig | None = None,
                 black: EngineConfig | None = None,
                 white_limits: SearchLimits | None = None,
                 black_limits: SearchLimits | None = None,
                 book: OpeningBook | None = None,
                 seed: int | None = None,
                 start_fen: str = chess.STARTING_FEN,
                 max_plies: int = DEFAULT_MAX_PLIES) -> None:
        self.configs = {chess.WHITE: white or EngineConfig(), chess.BLACK: black or EngineConfig()}
        default = SearchLimits(movetime=1000)
        self.limits = {chess.WHITE: white_limits or default, chess.BLACK: black_limits or default}
        self.book = book
        self.rng = random.Random(seed)
        self.start_fen = start_fen
        self.max_plies = max_plies

    def book_move(self, board: chess.Board, history: list[str]) -> str | None:
        """Weighted-random book continuation that is legal on ``board``."""
        if self.book is None or len(history) >= self.book.book_depth:
            return None
        if self.start_fen != chess.STARTING_FEN:
            return None
        suggestions = [s for s in self.book.continuations(history)
                       if chess.Move.from_uci(s.move) in board.legal_moves]
        if not suggestions:
            return None
        choice = self.rng.choices(suggestions, weights=[max(s.weight, 1) for s in suggestions])[0]
        return choice.move

    async def play(self) -> MatchResult:
        selections = await asyncio.gather(
            select_engine(self.configs[chess.WHITE]),
            select_engine(self.configs[chess.BLACK]),
            return_exceptions=True,
        )
        started = [s for s in selections if isinstance(s, EngineSelection)]
        try:
            for outcome in selections:
                if isinstance(outcome, BaseException):
                    raise outcome
            engines = {chess.WHITE: selections[0], chess.BLACK: selections[1]}
            return await self._play(engines)
        finally:
            await asyncio.gather(*(s.engine.quit() for s in started))

    async def _play(self, engines: dict) -> MatchResult:
        board = chess.Board(self.start_fen)
        result = MatchResult(
            tiers={"white": engines[chess.WHITE].tier.value,
                   "black": engines[chess.BLACK].tier.value},
        )
        for selection in engines.values():
            await selection.engine.new_game()

        history: list[str] = []
        while not board.is_game_over(claim_draw=True) and len(history) < self.max_plies:
            color = board.turn
            move = self.book_move(board, history)
            source = "book"
            if move is None:
                source = "engine"
                engine = engines[color].engine
                await engine.set_position(self.start_fen, history)
                search = await engine.search(self.limits[color])
                if search.best_move is None:
                    raise EngineError("Engine returned no move in a position with legal moves")
                move = search.best_move

            parsed = chess.Move.from_uci(move)
            if parsed not in board.legal_moves:
                raise EngineError(f"Engine played illegal move {move} in {board.fen()}")
            result.moves.append(MatchMove(
                ply=len(history),
                move=move,
                san=board.san(parsed),
                color="white" if color == chess.WHITE else "black",
                source=source,
            ))
            board.push(parsed)
            history.append(move)
            logger.debug("Ply %d: %s (%s)", len(history), move, source)

        outcome = board.outcome(claim_draw=True)
        if outcome is not None:
            result.result = outcome.result()
            result.termination = outcome.termination.name.lower()
        else:
            result.result = "*"
            result.termination = "max_plies"
        result.final_fen = board.fen()
        logger.info("Match finished %s (%s) after %d plies",
                    result.result, result.termination, len(history))
        return result
