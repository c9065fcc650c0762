"""Full-game analysis: replay a game and grade every move.

Each of the N+1 positions of a game is analyzed once. A move's delta is
the mover's evaluation after the move minus the mover's evaluation before
it, so a negative delta is always a loss for the player who moved.
"""

from __future__ import annotations

import io
import logging
import re

import chess
import chess.pgn

from chess_insight.analysis import AnalysisPipeline
from chess_insight.config import AnalysisConfig
from chess_insight.errors import IllegalMoveError
from chess_insight.models import (
    Evaluation,
    GameAnalysisResult,
    MoveRecord,
    OpeningMatch,
    Position,
    SearchLimits,
)
from chess_insight.openings import OpeningBook

logger = logging.getLogger(__name__)

# Move classification thresholds (delta in pawns -> classification), worst first
_CLASSIFICATION_THRESHOLDS = [
    (-2.0, "blunder"),
    (-0.5, "mistake"),
    (-0.2, "inaccuracy"),
]

QUALITIES = ("blunder", "mistake", "inaccuracy", "good")

_GLYPHS = {"inaccuracy": "?!", "mistake": "?", "blunder": "??"}

_CRITICAL_DELTA = 2.0

_QUOTED = re.compile(r"'([^']+)'")


def classify_delta(delta: float) -> str:
    """Classify a move by the mover's evaluation delta in pawns.

    Args:
        delta: Evaluation after minus evaluation before, mover's perspective.

    Returns:
        "blunder", "mistake", "inaccuracy" or "good".
    """
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if delta < threshold:
            return label
    return "good"


def performance_rating(accuracy: float, blunders: int) -> str:
    if accuracy >= 95 and blunders == 0:
        return "Perfect"
    if accuracy >= 90 and blunders <= 1:
        return "Excellent"
    if accuracy >= 80 and blunders <= 2:
        return "Good"
    if accuracy >= 70:
        return "Average"
    if accuracy >= 60:
        return "Below Average"
    return "Poor"


def _side(color: chess.Color) -> str:
    return "white" if color == chess.WHITE else "black"


# ---------------------------------------------------------------------------
# Game record parsing
# ---------------------------------------------------------------------------


def parse_moves(moves, start_fen: str = chess.STARTING_FEN) -> list[str]:
    """Convert a list of UCI or SAN moves to validated UCI moves.

    Raises:
        IllegalMoveError: At the first move that is not legal, with its ply.
    """
    board = chess.Board(start_fen)
    parsed = []
    for ply, text in enumerate(moves):
        try:
            move = chess.Move.from_uci(text)
        except ValueError:
            move = None
        if move is None or move not in board.legal_moves:
            try:
                move = board.parse_san(text)
            except ValueError as exc:
                raise IllegalMoveError(text, board.fen(), ply) from exc
        if not move:
            raise IllegalMoveError(text, board.fen(), ply)
        parsed.append(move.uci())
        board.push(move)
    return parsed


def parse_pgn(text: str) -> tuple[str, list[str], str]:
    """Read the mainline of a PGN string.

    Returns:
        (start FEN, UCI moves, Result header or "*").

    Raises:
        IllegalMoveError: The movetext contains an illegal or unparseable move.
    """
    game = chess.pgn.read_game(io.StringIO(text))
    if game is None:
        raise ValueError("Empty game record")
    moves = [move.uci() for move in game.mainline_moves()]
    if game.errors:
        error = game.errors[0]
        match = _QUOTED.search(str(error))
        board = game.end().board()
        raise IllegalMoveError(match.group(1) if match else str(error), board.fen(), len(moves))
    return game.board().fen(), moves, game.headers.get("Result", "*")


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


class GameAnalyzer:
    """Grade every move of a game with an AnalysisPipeline."""

    def __init__(self, pipeline: AnalysisPipeline, book: OpeningBook | None = None,
                 config: AnalysisConfig | None = None) -> None:
        self.pipeline = pipeline
        self.config = config or pipeline.config
        self.book = book or OpeningBook(book_depth=self.config.book_depth)

    async def analyze_game(self, game, start_fen: str | None = None,
                           depth: int | None = None) -> GameAnalysisResult:
        """Analyze a whole game.

        Args:
            game: PGN string, or a list of UCI/SAN moves.
            start_fen: Start position for move lists (PGN uses its FEN header).
            depth: Search depth per position; defaults to ``game_depth``.

        Returns:
            GameAnalysisResult with one MoveRecord per ply.

        Raises:
            IllegalMoveError: Any move is illegal. Raised before the engine
                is used, so no partial result exists.
        """
        header_result = "*"
        if isinstance(game, str):
            start_fen, moves, header_result = parse_pgn(game)
        else:
            start_fen = start_fen or chess.STARTING_FEN
            moves = parse_moves(game, start_fen)

        limits = SearchLimits(depth=depth or self.config.game_depth)
        logger.info("Analyzing game of %d plies at depth %d", len(moves), limits.depth)

        analyses = []
        for ply in range(len(moves) + 1):
            position = Position(start_fen, tuple(moves[:ply]))
            analyses.append(await self.pipeline.analyze(position, limits))

        board = chess.Board(start_fen)
        records = []
        for ply, move in enumerate(moves):
            before = analyses[ply]
            before_eval = before.evaluation
            after_eval = analyses[ply + 1].evaluation.negated()
            delta = (after_eval.centipawns - before_eval.centipawns) / 100.0
            quality = classify_delta(delta)

            parsed = chess.Move.from_uci(move)
            best_san = None
            if before.best_move and chess.Move.from_uci(before.best_move) in board.legal_moves:
                best_san = board.san(chess.Move.from_uci(before.best_move))
            records.append(MoveRecord(
                ply=ply,
                move=move,
                san=board.san(parsed),
                color=_side(board.turn),
                eval_before=before_eval,
                eval_after=after_eval,
                delta=delta,
                quality=quality,
                is_best=move == before.best_move,
                best_move=before.best_move,
                best_san=best_san,
                best_line=list(before.best_line),
                critical=abs(delta) > _CRITICAL_DELTA,
                glyph=_GLYPHS.get(quality, ""),
            ))
            board.push(parsed)

        result = board.result(claim_draw=False)
        if result == "*":
            result = header_result

        opening = OpeningMatch()
        if start_fen == chess.STARTING_FEN:
            opening = self.book.identify(moves)

        white_evals = [
            a.evaluation if chess.Board(a.fen).turn == chess.WHITE else a.evaluation.negated()
            for a in analyses
        ]
        return self._aggregate(records, opening, result, white_evals)

    def _aggregate(self, records: list[MoveRecord], opening: OpeningMatch,
                   result: str, white_evals: list[Evaluation]) -> GameAnalysisResult:
        counts = {side: {q: 0 for q in QUALITIES} | {"best": 0} for side in ("white", "black")}
        totals = {"white": 0, "black": 0}
        good = {"white": 0, "black": 0}
        for record in records:
            counts[record.color][record.quality] += 1
            totals[record.color] += 1
            if record.is_best:
                counts[record.color]["best"] += 1
            if record.quality == "good" or record.is_best:
                good[record.color] += 1

        accuracy = {
            side: round(100.0 * good[side] / totals[side], 1) if totals[side] else 100.0
            for side in ("white", "black")
        }
        total = sum(totals.values())
        overall = round(100.0 * sum(good.values()) / total, 1) if total else 100.0
        critical = [record.ply for record in records if record.critical]

        numeric = [evaluation.numeric for evaluation in white_evals]
        summary = {
            "result": result,
            "total_moves": total,
            "opening": opening.name,
            "accuracy": dict(accuracy),
            "performance": {
                side: performance_rating(accuracy[side], counts[side]["blunder"])
                for side in ("white", "black")
            },
            "key_moments": len(critical),
            "evaluation": {
                "start": numeric[0],
                "end": numeric[-1],
                "max": max(numeric),
                "min": min(numeric),
            },
        }
        return GameAnalysisResult(
            moves=records,
            counts=counts,
            accuracy=accuracy,
            overall_accuracy=overall,
            opening=opening,
            result=result,
            critical=critical,
            summary=summary,
        )


def annotations(result: GameAnalysisResult) -> list[str]:
    """Render each move as ``"Nf3 (+0.25)"`` with glyph and better move."""
    lines = []
    for record in result.moves:
        text = f"{record.san}{record.glyph} ({record.eval_after.display})"
        if not record.is_best and record.best_san:
            text += f" [Better: {record.best_san}]"
        lines.append(text)
    return lines
