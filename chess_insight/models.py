"""Shared data models for engine integration and analysis.

All scores carried by these models are from the perspective of the side
to move in the position they describe. Code that needs another
perspective (e.g. the player who just moved) converts explicitly with
``Evaluation.negated()``.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable
from dataclasses import dataclass, field

import chess
import chess.engine

from chess_insight.errors import IllegalMoveError, InvalidPositionError

# Centipawn-equivalent of a mate on the capped difference scale
_MATE_SCORE = 10000
# Finite scores are clamped below mates on that scale
_SCORE_CAP = _MATE_SCORE - 1000

LegalityOracle = Callable[[str, str], bool]


def is_legal(fen: str, move: str) -> bool:
    """Default move-legality oracle backed by python-chess.

    Args:
        fen: Position the move is played from.
        move: Coordinate move, e.g. "e2e4" or "e7e8q".

    Returns:
        True if the move is legal in the position.
    """
    try:
        board = chess.Board(fen)
        parsed = chess.Move.from_uci(move)
    except ValueError:
        return False
    return bool(parsed) and parsed in board.legal_moves


def replay(fen: str, moves, oracle: LegalityOracle | None = None) -> chess.Board:
    """Replay coordinate moves from a FEN, validating each with the oracle.

    Raises:
        InvalidPositionError: If the FEN cannot be parsed or is not a valid position.
        IllegalMoveError: If any move is rejected; nothing after it is applied.
    """
    check = oracle or is_legal
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise InvalidPositionError(f"Invalid FEN {fen!r}: {exc}") from exc
    if not board.is_valid():
        raise InvalidPositionError(f"Invalid FEN position: {fen}")

    for ply, move in enumerate(moves):
        current = board.fen()
        if not check(current, move):
            raise IllegalMoveError(move, current, ply)
        board.push(chess.Move.from_uci(move))
    return board


class EngineTier(enum.Enum):
    """Engine implementation tiers, strongest first."""

    NATIVE = "native"
    EXTERNAL = "external"
    STUB = "stub"


@dataclass(frozen=True)
class Position:
    """A base FEN plus the coordinate moves played from it.

    The final FEN is derived on construction; an illegal move makes the
    Position impossible to build.
    """

    base_fen: str = chess.STARTING_FEN
    moves: tuple[str, ...] = ()
    fen: str = field(init=False, compare=False)

    def __post_init__(self) -> None:
        moves = tuple(self.moves)
        board = replay(self.base_fen, moves)
        object.__setattr__(self, "moves", moves)
        object.__setattr__(self, "fen", board.fen())

    @classmethod
    def from_fen(cls, fen: str) -> Position:
        return cls(base_fen=fen)

    def board(self) -> chess.Board:
        """Return a fresh board with the full move stack applied."""
        board = chess.Board(self.base_fen)
        for move in self.moves:
            board.push_uci(move)
        return board

    def push(self, move: str) -> Position:
        return Position(self.base_fen, self.moves + (move,))

    @property
    def turn(self) -> chess.Color:
        return chess.Board(self.fen).turn


@dataclass(frozen=True)
class SearchLimits:
    """Exactly one of depth (plies), movetime (ms) or nodes."""

    depth: int | None = None
    movetime: int | None = None
    nodes: int | None = None

    def __post_init__(self) -> None:
        given = {
            name: value
            for name, value in (
                ("depth", self.depth),
                ("movetime", self.movetime),
                ("nodes", self.nodes),
            )
            if value is not None
        }
        if len(given) != 1:
            raise ValueError(
                f"Exactly one search limit must be set, got {sorted(given) or 'none'}"
            )
        name, value = next(iter(given.items()))
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"Search limit {name} must be a positive integer, got {value!r}")

    @property
    def kind(self) -> str:
        if self.depth is not None:
            return "depth"
        if self.movetime is not None:
            return "movetime"
        return "nodes"

    @property
    def value(self) -> int:
        return getattr(self, self.kind)


@dataclass
class EngineLine:
    """One principal variation reported during a search."""

    multipv: int
    score: chess.engine.Score | None
    pv: list[str] = field(default_factory=list)
    depth: int = 0
    seldepth: int = 0
    nodes: int = 0


@dataclass
class EngineResult:
    """Terminal result of one search."""

    best_move: str | None
    ponder_move: str | None = None
    depth: int = 0
    seldepth: int = 0
    nodes: int = 0
    nps: int = 0
    time_ms: int = 0
    lines: list[EngineLine] = field(default_factory=list)
    stopped: bool = False


@dataclass(frozen=True)
class Evaluation:
    """Score in pawns or a signed mate count, side-to-move perspective.

    ``mate_in`` > 0: side to move mates in that many moves.
    ``mate_in`` < 0: side to move is mated in that many moves.
    ``mate_in`` == 0: the game already ended in mate; ``mate_given``
    says whether the side in whose perspective we are delivered it.
    """

    pawns: float | None = None
    mate_in: int | None = None
    mate_given: bool = False
    display: str = ""

    def __post_init__(self) -> None:
        if (self.pawns is None) == (self.mate_in is None):
            raise ValueError("Evaluation is either numeric or mate, not both or neither")
        if self.mate_given and self.mate_in != 0:
            raise ValueError("mate_given only applies to a finished mate")
        if not self.display:
            object.__setattr__(self, "display", self._format())

    @classmethod
    def from_centipawns(cls, cp: int) -> Evaluation:
        return cls(pawns=cp / 100.0)

    @classmethod
    def from_mate(cls, moves: int, given: bool = False) -> Evaluation:
        return cls(mate_in=moves, mate_given=given and moves == 0)

    @classmethod
    def from_score(cls, score: chess.engine.Score) -> Evaluation:
        mate = score.mate()
        if mate is not None:
            # python-chess models "mate already delivered" as MateGiven (mate() == 0, positive)
            return cls.from_mate(mate, given=mate == 0 and score > chess.engine.Cp(0))
        return cls.from_centipawns(score.score())

    @property
    def is_mate(self) -> bool:
        return self.mate_in is not None

    @property
    def sort_key(self) -> tuple[int, int]:
        """Ordering key: mates for, then finite scores, then mates against.

        Quicker mates rank higher; being mated later ranks above being
        mated sooner.
        """
        if self.mate_in is None:
            return (1, round(self.pawns * 100))
        if self.mate_in > 0 or self.mate_given:
            return (2, -self.mate_in)
        return (0, -self.mate_in)

    @property
    def centipawns(self) -> int:
        """Centipawns on a capped scale for score differences.

        Finite scores are clamped to +/-9000 so every mate stays beyond them.
        """
        if self.mate_in is None:
            return max(-_SCORE_CAP, min(_SCORE_CAP, round(self.pawns * 100)))
        if self.mate_in > 0 or self.mate_given:
            return _MATE_SCORE - self.mate_in
        return -_MATE_SCORE - self.mate_in

    @property
    def numeric(self) -> float:
        """Score in pawns, with mates mapped onto the ordering scale."""
        if self.pawns is not None:
            return self.pawns
        return self.centipawns / 100.0

    def negated(self) -> Evaluation:
        """The same evaluation seen by the other side."""
        if self.mate_in is None:
            return Evaluation(pawns=-self.pawns)
        if self.mate_in == 0:
            return Evaluation(mate_in=0, mate_given=not self.mate_given)
        return Evaluation(mate_in=-self.mate_in)

    def _format(self) -> str:
        if self.mate_in is not None:
            if self.mate_in == 0:
                return "#" if self.mate_given else "-#"
            return f"M{self.mate_in}" if self.mate_in > 0 else f"-M{-self.mate_in}"
        if self.pawns > 0:
            return f"+{self.pawns:.2f}"
        if self.pawns == 0:
            return "0.00"
        return f"{self.pawns:.2f}"


@dataclass(frozen=True)
class Assessment:
    """Qualitative reading of an Evaluation."""

    advantage: str
    magnitude: str
    winning: bool
    losing: bool
    critical: bool
    description: str = ""


@dataclass(frozen=True)
class Recommendation:
    """A candidate move ranked against the engine's top line."""

    move: str
    type: str
    evaluation: Evaluation
    line: tuple[str, ...] = ()
    explanation: str = ""


@dataclass
class PositionAnalysis:
    """Everything the analysis pipeline derives for one position."""

    fen: str
    turn: str
    depth: int
    best_move: str | None
    best_line: list[str]
    evaluation: Evaluation
    assessment: Assessment
    recommendations: list[Recommendation] = field(default_factory=list)
    phase: str = "unknown"
    tactics: list[str] = field(default_factory=list)
    plans: list[str] = field(default_factory=list)
    result: EngineResult | None = None


@dataclass(frozen=True)
class EvaluationChange:
    """Evaluation shift caused by one move, seen by the player who made it."""

    before: Evaluation
    after: Evaluation
    change: float
    improved: bool
    description: str


@dataclass(frozen=True)
class BookMove:
    """A weighted continuation suggested by the opening book."""

    move: str
    weight: int
    name: str | None = None


@dataclass(frozen=True)
class OpeningMatch:
    """Result of an opening book lookup; ``name`` is None when unknown."""

    name: str | None = None
    eco: str | None = None
    family: str | None = None
    description: str = ""
    moves_matched: int = 0
    in_book: bool = False
    suggestions: tuple[BookMove, ...] = ()

    @property
    def known(self) -> bool:
        return self.name is not None


@dataclass
class MoveRecord:
    """Analysis of a single ply, evaluations from the mover's perspective."""

    ply: int
    move: str
    san: str
    color: str
    eval_before: Evaluation
    eval_after: Evaluation
    delta: float
    quality: str
    is_best: bool
    best_move: str | None = None
    best_san: str | None = None
    best_line: list[str] = field(default_factory=list)
    critical: bool = False
    glyph: str = ""


@dataclass
class GameAnalysisResult:
    """Full-game analysis: per-ply records plus per-side aggregates."""

    moves: list[MoveRecord] = field(default_factory=list)
    counts: dict = field(default_factory=dict)
    accuracy: dict = field(default_factory=lambda: {"white": 0.0, "black": 0.0})
    overall_accuracy: float = 0.0
    opening: OpeningMatch | None = None
    result: str = "*"
    critical: list[int] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


class CancelToken:
    """Cooperative cancellation handle passed into long-running searches.

    Setting the token asks the engine to stop; the search still resolves
    with the engine's final best move.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
